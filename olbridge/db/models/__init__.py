"""ORM models aggregate exports (catalog mirror + social tables)."""
from .catalog import (  # noqa: F401
	Base,
	Book,
	BookStats,
	BookStatusTag,
	UserBook,
	split_list,
	utcnow,
)
from .social import (  # noqa: F401
	NOTIFICATION_TYPES,
	Activity,
	AuthorFollow,
	AuthorWorksSnapshot,
	BookFollow,
	Notification,
	NotificationPreference,
	dump_metadata,
	load_metadata,
)

__all__ = [
	"Base",
	"Book",
	"BookStats",
	"BookStatusTag",
	"UserBook",
	"NOTIFICATION_TYPES",
	"Activity",
	"AuthorFollow",
	"AuthorWorksSnapshot",
	"BookFollow",
	"Notification",
	"NotificationPreference",
	"dump_metadata",
	"load_metadata",
	"split_list",
	"utcnow",
]
