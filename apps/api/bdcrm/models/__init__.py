from bdcrm.models.audit import AuditLog
from bdcrm.workpackages.models import WorkPackage, WorkPackageItem, WorkPackagePhase

__all__ = [
	"AuditLog",
	"WorkPackage",
	"WorkPackageItem",
	"WorkPackagePhase",
]
