"""Service layer exports."""

from . import (
	behavioral_decay,
	cascade_service,
	expiration_service,
	export_service,
	maintenance_service,
	notification_service,
	point_service,
	stats_service,
)

__all__ = [
	"behavioral_decay",
	"cascade_service",
	"expiration_service",
	"export_service",
	"maintenance_service",
	"notification_service",
	"point_service",
	"stats_service",
]
