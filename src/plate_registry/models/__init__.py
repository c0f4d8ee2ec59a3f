"""ORM model registry: import all models so metadata.create_all discovers them."""

from plate_registry.models.base import Base
from plate_registry.models.import_job import ImportJob
from plate_registry.models.plate import Plate

__all__ = [
    "Base",
    "ImportJob",
    "Plate",
]
