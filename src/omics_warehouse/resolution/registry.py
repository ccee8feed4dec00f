"""Per-experiment name -> entity registry."""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .model import Comparison, Condition, Material, Sample, Treatment

logger = logging.getLogger(__name__)


class NamedEntityRegistry:
    """Name lookups for the materials, treatments, conditions and samples of
    one experiment.

    Maps are insertion-ordered.  The registry is populated while a metadata
    document is assembled and is read-only afterwards; results files are
    reconciled against it by name.
    """

    def __init__(self) -> None:
        self.materials: Dict[str, Material] = {}
        self.treatments: Dict[str, Treatment] = {}
        self.conditions: Dict[str, Condition] = {}
        self.samples: Dict[str, Sample] = {}
        self.bio_replicates: Dict[str, List[str]] = {}
        self.comparisons: List[Comparison] = []

    # -----------------------------------------------------------------
    # Registration
    # -----------------------------------------------------------------

    def add_material(self, material: Material) -> None:
        self._add(self.materials, "material", material.name, material)

    def add_treatment(self, treatment: Treatment) -> None:
        self._add(self.treatments, "treatment", treatment.name, treatment)

    def add_condition(self, condition: Condition) -> None:
        """Register a condition together with its samples and bio-replicates."""
        self._add(self.conditions, "condition", condition.name, condition)
        for sample in condition.samples:
            self._add(self.samples, "sample", sample.name, sample)
            label = sample.bio_replicate or sample.name
            self.bio_replicates.setdefault(label, []).append(sample.name)

    def add_comparison(self, comparison: Comparison) -> None:
        self.comparisons.append(comparison)

    @staticmethod
    def _add(table: Dict, kind: str, name: str, entity) -> None:
        if name in table:
            raise ValueError(f"Duplicate {kind} name: {name}")
        table[name] = entity

    # -----------------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------------

    def material(self, name: str) -> Optional[Material]:
        return self.materials.get(name)

    def treatment(self, name: str) -> Optional[Treatment]:
        return self.treatments.get(name)

    def condition(self, name: str) -> Optional[Condition]:
        return self.conditions.get(name)

    def sample(self, name: str) -> Optional[Sample]:
        return self.samples.get(name)

    def has_samples(self, names: Iterable[str]) -> List[str]:
        """Return the subset of ``names`` that are already registered."""
        return [name for name in names if name in self.samples]

    def bio_replicate(self, label: str) -> Optional[Tuple[Condition, List[Sample]]]:
        """Resolve a bio-replicate label (``control_R1``) to its condition and samples."""
        names = self.bio_replicates.get(label)
        if not names:
            return None
        samples = [self.samples[name] for name in names]
        return samples[0].condition, samples

    def comparison_conditions(
        self, comparison: Comparison
    ) -> Tuple[Optional[Condition], Optional[Condition]]:
        return self.condition(comparison.treatment), self.condition(comparison.control)

    def __repr__(self) -> str:
        return (
            f"NamedEntityRegistry(materials={len(self.materials)}, "
            f"treatments={len(self.treatments)}, conditions={len(self.conditions)}, "
            f"samples={len(self.samples)})"
        )
