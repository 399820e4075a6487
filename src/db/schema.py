"""Declarative description of the learning-platform collections exposed to
generated queries.

The same definitions drive the schema text embedded in generation prompts and
the checks the read-only data-access layer enforces, so the model is never told
about a field the executor would refuse. Credential tables (Account, Session,
PushSubscription, Otp) are deliberately absent, and credential columns on
exposed tables are marked hidden.
"""

from dataclasses import dataclass

ENUMS: dict[str, tuple[str, ...]] = {
    "Role": ("INSTRUCTOR", "MENTOR", "STUDENT", "ADMIN"),
    "VideoType": ("DRIVE", "YOUTUBE", "ZOOM"),
    "attachmentType": ("ASSIGNMENT", "GITHUB", "ZOOM", "OTHERS"),
    "submissionMode": ("HTML_CSS_JS", "REACT", "EXTERNAL_LINK", "SANDBOX"),
    "pointCategory": ("RESPOSIVENESS", "STYLING", "OTHER"),
    "NotificationMedium": ("PUSH", "NOTIFICATION", "EMAIL", "WHATSAPP", "SMS"),
    "NotificationEvent": (
        "CLASS_CREATED",
        "ASSIGNMENT_CREATED",
        "ASSIGNMENT_REVIEWED",
        "LEADERBOARD_UPDATED",
        "DOUBT_RESPONDED",
        "ATTENDANCE_MISSED",
        "CUSTOM_MESSAGE",
    ),
}


@dataclass(frozen=True)
class Field:
    name: str
    type: str
    optional: bool = False
    is_list: bool = False
    hidden: bool = False

    @property
    def is_datetime(self) -> bool:
        return self.type == "DateTime"

    @property
    def is_text(self) -> bool:
        return self.type == "String" and not self.is_list


@dataclass(frozen=True)
class Relation:
    """A link to another collection.

    `local` is the column on this collection and `foreign` the column on the
    target that must be equal to it.
    """
    name: str
    target: str
    many: bool
    local: str
    foreign: str
    optional: bool = False


@dataclass(frozen=True)
class Collection:
    accessor: str
    model: str
    fields: tuple[Field, ...]
    relations: tuple[Relation, ...] = ()
    unique: tuple[tuple[str, ...], ...] = ()

    @property
    def table(self) -> str:
        return self.model

    def field(self, name: str) -> Field | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def relation(self, name: str) -> Relation | None:
        for r in self.relations:
            if r.name == name:
                return r
        return None

    def visible_fields(self) -> list[Field]:
        return [f for f in self.fields if not f.hidden]

    @property
    def unique_keys(self) -> tuple[tuple[str, ...], ...]:
        """Field sets that identify a single record, `id` first."""
        return (("id",), *self.unique)


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------

def _f(name: str, type_: str = "String", *, optional: bool = False,
       is_list: bool = False, hidden: bool = False) -> Field:
    return Field(name, type_, optional, is_list, hidden)


_ID = _f("id")
_TIMESTAMPS = (_f("createdAt", "DateTime"), _f("updatedAt", "DateTime"))


def _one(name: str, target: str, local: str, foreign: str = "id", optional: bool = False) -> Relation:
    return Relation(name, target, False, local, foreign, optional)


def _many(name: str, target: str, foreign: str, local: str = "id") -> Relation:
    return Relation(name, target, True, local, foreign)


COLLECTIONS: dict[str, Collection] = {c.accessor: c for c in (
    Collection(
        "organization", "Organization",
        (_ID, _f("orgCode"), _f("name"), *_TIMESTAMPS),
        (_many("users", "user", "organizationId"),),
        unique=(("orgCode",),),
    ),
    Collection(
        "user", "User",
        (
            _ID,
            _f("name"),
            _f("username"),
            _f("email", optional=True),
            _f("image", optional=True),
            _f("password", optional=True, hidden=True),
            _f("mobile", optional=True),
            _f("role", "Role"),
            _f("organizationId", optional=True),
            _f("lastSeen", "DateTime", optional=True),
            _f("emailVerified", "DateTime", optional=True),
            _f("isProfilePublic", "Boolean"),
            _f("oneTimePassword", hidden=True),
            _f("isAdmin", "Boolean"),
            _f("disabledAt", "DateTime", optional=True),
            *_TIMESTAMPS,
        ),
        (
            _one("organization", "organization", "organizationId", optional=True),
            _many("course", "course", "createdById"),
            _many("enrolledUsers", "enrolledUsers", "username", local="username"),
            _many("assignedMentees", "enrolledUsers", "mentorUsername", local="username"),
            _many("doubt", "doubt", "userId"),
            _many("response", "response", "userId"),
            _many("Attendence", "attendance", "username", local="username"),
            _many("notificationsFor", "notification", "intendedForId"),
        ),
        unique=(("username",), ("email",)),
    ),
    Collection(
        "course", "Course",
        (
            _ID,
            _f("createdById"),
            _f("title"),
            _f("image", optional=True),
            _f("startDate", "DateTime"),
            _f("endDate", "DateTime", optional=True),
            _f("isPublished", "Boolean"),
            *_TIMESTAMPS,
        ),
        (
            _one("createdBy", "user", "createdById"),
            _many("enrolledUsers", "enrolledUsers", "courseId"),
            _many("classes", "class", "courseId"),
            _many("attachments", "attachment", "courseId"),
            _many("doubts", "doubt", "courseId"),
            _many("ScheduleEvent", "scheduleEvent", "courseId"),
        ),
    ),
    Collection(
        "enrolledUsers", "EnrolledUsers",
        (
            _ID,
            _f("username"),
            _f("mentorUsername", optional=True),
            _f("startDate", "DateTime"),
            _f("endDate", "DateTime", optional=True),
            _f("courseId", optional=True),
            *_TIMESTAMPS,
        ),
        (
            _one("user", "user", "username", "username"),
            _one("mentor", "user", "mentorUsername", "username", optional=True),
            _one("course", "course", "courseId", optional=True),
            _many("submission", "submission", "enrolledUserId"),
        ),
        unique=(("username", "courseId", "mentorUsername"),),
    ),
    Collection(
        "class", "Class",
        (
            _ID,
            _f("title"),
            _f("videoId"),
            _f("courseId", optional=True),
            _f("folderId", optional=True),
            *_TIMESTAMPS,
        ),
        (
            _one("video", "video", "videoId"),
            _one("course", "course", "courseId", optional=True),
            _many("attachments", "attachment", "classId"),
            _many("Attendence", "attendance", "classId"),
        ),
    ),
    Collection(
        "video", "Video",
        (
            _ID,
            _f("videoLink", optional=True),
            _f("videoType", "VideoType"),
            _f("timeStamps", "Json", optional=True),
            *_TIMESTAMPS,
        ),
        (_many("class", "class", "videoId"),),
    ),
    Collection(
        "attendance", "Attendance",
        (
            _ID,
            _f("username"),
            _f("classId"),
            _f("attendedDuration", "Int", optional=True),
            _f("attended", "Boolean"),
            _f("data", "Json", is_list=True),
            *_TIMESTAMPS,
        ),
        (
            _one("user", "user", "username", "username"),
            _one("class", "class", "classId"),
        ),
        unique=(("username", "classId"),),
    ),
    Collection(
        "attachment", "Attachment",
        (
            _ID,
            _f("title"),
            _f("details", optional=True),
            _f("attachmentType", "attachmentType"),
            _f("link", optional=True),
            _f("maxSubmissions", "Int", optional=True),
            _f("classId", optional=True),
            _f("courseId", optional=True),
            _f("submissionMode", "submissionMode"),
            _f("sandboxTemplate", optional=True),
            _f("dueDate", "DateTime", optional=True),
            *_TIMESTAMPS,
        ),
        (
            _one("class", "class", "classId", optional=True),
            _one("course", "course", "courseId", optional=True),
            _many("submissions", "submission", "attachmentId"),
        ),
    ),
    Collection(
        "submission", "submission",
        (
            _ID,
            _f("enrolledUserId"),
            _f("attachmentId"),
            _f("data", "Json", optional=True),
            _f("overallFeedback", optional=True),
            _f("editTime", "DateTime"),
            _f("submissionLink", optional=True),
            _f("submissionDate", "DateTime"),
            *_TIMESTAMPS,
        ),
        (
            _one("enrolledUser", "enrolledUsers", "enrolledUserId"),
            _one("assignment", "attachment", "attachmentId"),
            _many("points", "point", "submissionId"),
        ),
    ),
    Collection(
        "point", "Point",
        (
            _ID,
            _f("category", "pointCategory"),
            _f("feedback", optional=True),
            _f("score", "Int"),
            _f("submissionId", optional=True),
            *_TIMESTAMPS,
        ),
        (_one("submissions", "submission", "submissionId", optional=True),),
        unique=(("submissionId", "category"),),
    ),
    Collection(
        "doubt", "Doubt",
        (
            _ID,
            _f("title", optional=True),
            _f("description", optional=True),
            _f("userId"),
            _f("courseId", optional=True),
            *_TIMESTAMPS,
        ),
        (
            _one("user", "user", "userId"),
            _one("course", "course", "courseId", optional=True),
            _many("response", "response", "doubtId"),
        ),
    ),
    Collection(
        "response", "Response",
        (_ID, _f("description", optional=True), _f("userId"), _f("doubtId"), *_TIMESTAMPS),
        (
            _one("user", "user", "userId"),
            _one("doubt", "doubt", "doubtId"),
        ),
    ),
    Collection(
        "notification", "Notification",
        (
            _ID,
            _f("intendedForId"),
            _f("mediumSent", "NotificationMedium"),
            _f("customLink", optional=True),
            _f("causedById", optional=True),
            _f("eventType", "NotificationEvent"),
            _f("message", optional=True),
            _f("causedObjects", "Json", optional=True),
            _f("readAt", "DateTime", optional=True),
            *_TIMESTAMPS,
        ),
        (
            _one("intendedFor", "user", "intendedForId"),
            _one("causedBy", "user", "causedById", optional=True),
        ),
    ),
    Collection(
        "scheduleEvent", "ScheduleEvent",
        (
            _ID,
            _f("title"),
            _f("startTime", "DateTime"),
            _f("endTime", "DateTime"),
            _f("isPublished", "Boolean"),
            _f("courseId", optional=True),
            _f("createdById"),
            *_TIMESTAMPS,
        ),
        (
            _one("course", "course", "courseId", optional=True),
            _one("createdBy", "user", "createdById"),
        ),
    ),
    Collection(
        "holidays", "Holidays",
        (
            _ID,
            _f("reason"),
            _f("description", optional=True),
            _f("startDate", "DateTime"),
            _f("endDate", "DateTime"),
        ),
    ),
)}


def get_collection(accessor: str) -> Collection | None:
    return COLLECTIONS.get(accessor)


# ---------------------------------------------------------------------------
# Prompt rendering
# ---------------------------------------------------------------------------

SCHEMA_CONTEXT = """\
Key Relationships to Remember:
1. User -> EnrolledUsers -> Course: users enroll in courses (joined on username)
2. Course -> Class -> Attendance: classes belong to courses, attendance tracks class participation
3. Course/Class -> Attachment -> submission -> Point: assignments live at course or class level
4. User -> Doubt -> Response: users ask doubts, others respond
5. User -> Notification: users receive notifications (intendedForId)
6. EnrolledUsers.mentorUsername links a student enrollment to the assigned mentor

Common Query Patterns:
- A user's enrolled courses: db.course.findMany({ where: { enrolledUsers: { some: { username: "user123" } } }, select: { id: true, title: true } })
- Courses an instructor created: db.course.findMany({ where: { createdById: "<user id>" }, select: { id: true, title: true } })
- A user's attendance: db.attendance.findMany({ where: { username: "user123" }, select: { classId: true, attended: true } })
- A user's submissions: db.submission.findMany({ where: { enrolledUser: { username: "user123" } }, select: { id: true, submissionDate: true } })

Field Types to Remember:
- IDs are String (UUID)
- Dates are DateTime; compare with ISO strings or new Date("YYYY-MM-DD")
- Optional fields use ?
- Enums have specific values (Role.STUDENT, etc.)
- Credential tables (Account, Session, PushSubscription, Otp) cannot be queried\
"""


def _render_field(f: Field) -> str:
    type_ = f.type + ("[]" if f.is_list else "") + ("?" if f.optional else "")
    return f"  {f.name} {type_}"


def _render_relation(c: Collection, r: Relation) -> str:
    target = COLLECTIONS[r.target].model
    if r.many:
        return f"  {r.name} {target}[]"
    suffix = "?" if r.optional else ""
    return f"  {r.name} {target}{suffix} ({c.model}.{r.local} -> {target}.{r.foreign})"


def render_schema() -> str:
    """Render the exposed collections as a Prisma-like schema for prompts."""
    blocks: list[str] = []
    for name, values in ENUMS.items():
        blocks.append(f"enum {name} {{ {' '.join(values)} }}")

    for c in COLLECTIONS.values():
        lines = [f"model {c.model} {{  // accessed as db.{c.accessor}"]
        lines.extend(_render_field(f) for f in c.visible_fields())
        lines.extend(_render_relation(c, r) for r in c.relations)
        lines.extend(f"  @@unique([{', '.join(key)}])" for key in c.unique)
        lines.append("}")
        blocks.append("\n".join(lines))

    return "\n\n".join(blocks)
