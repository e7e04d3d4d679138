"""
Model/feature schema compatibility check.

Inference is strictly positional, so the model's declared input names
must match the feature generator's catalog name-for-name and in order.
"""
import logging
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from ..exceptions import ModelCompatibilityError
from ..models.schemas import ModelMetadata

logger = logging.getLogger(__name__)


class CompatibilityReport(BaseModel):
    """Result of comparing the model schema against the feature catalog."""
    model_version: str
    model_feature_count: int
    generator_feature_count: int
    first_mismatch_index: Optional[int] = None
    model_feature: Optional[str] = None
    generator_feature: Optional[str] = None

    model_config = ConfigDict(protected_namespaces=())

    @property
    def is_compatible(self) -> bool:
        return (
            self.model_feature_count == self.generator_feature_count and
            self.first_mismatch_index is None
        )

    @property
    def message(self) -> str:
        if self.model_feature_count != self.generator_feature_count:
            return (
                f"Feature count mismatch: model expects {self.model_feature_count}, "
                f"generator provides {self.generator_feature_count}"
            )
        if self.first_mismatch_index is not None:
            return (
                f"Feature name mismatch at position {self.first_mismatch_index}: "
                f"model expects '{self.model_feature}', generator provides '{self.generator_feature}'"
            )
        return "Model and feature generator are compatible"


class ModelCompatibilityChecker:
    """Compares a model's declared inputs with the generator's feature names."""

    def __init__(self, generator_feature_names: Sequence[str]):
        self.generator_feature_names: List[str] = list(generator_feature_names)

    def check(self, metadata: ModelMetadata) -> CompatibilityReport:
        model_names = metadata.feature_names
        report = CompatibilityReport(
            model_version=metadata.model_version,
            model_feature_count=len(model_names),
            generator_feature_count=len(self.generator_feature_names),
        )
        if report.model_feature_count != report.generator_feature_count:
            return report

        for i, (model_name, generator_name) in enumerate(zip(model_names, self.generator_feature_names)):
            if model_name != generator_name:
                return report.model_copy(update={
                    "first_mismatch_index": i,
                    "model_feature": model_name,
                    "generator_feature": generator_name,
                })

        return report

    def ensure_compatible(self, metadata: ModelMetadata) -> CompatibilityReport:
        """Raise ModelCompatibilityError unless the schemas match exactly."""
        report = self.check(metadata)
        if not report.is_compatible:
            logger.error(f"Model {metadata.model_version} is incompatible: {report.message}")
            raise ModelCompatibilityError(report.message, details=f"model_version={metadata.model_version}")

        logger.info(
            f"Model {metadata.model_version} compatible with feature generator "
            f"({report.model_feature_count} features)"
        )
        return report
