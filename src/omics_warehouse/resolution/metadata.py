"""Assemble experiment metadata documents into typed entities.

A metadata document (JSON) describes one omics experiment::

    {
      "experiment": {"short name": "EXP01", "species": "human", ...},
      "materials":  {"HeLa": {"cell line": {"name": "HeLa", "tissue": "cervix"}}},
      "treatments": {"DMSO": {"untargeted": {"name": "DMSO", "concentration": "0.1%"}}},
      "conditions": {
        "control": {
          "material": "HeLa",
          "treatments": ["DMSO"],
          "samples": {"s1": {"replicates": ["r1.fastq.gz", "r2.fastq.gz"]}}
        }
      },
      "comparisons": [{"treatment": {"name": "treated"}, "control": {"name": "control"}}]
    }

Sections are processed in the order experiment, materials, treatments,
conditions, comparisons.  Bad entries are skipped (recorded as
``SkippedEntry`` on the experiment and logged); only a missing experiment
section, short name, materials/conditions section or a condition without a
``material`` key aborts the document with ``MetadataError``.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..errors import MetadataError
from .model import (
    Activator,
    CellLine,
    Comparison,
    Condition,
    Experiment,
    Inhibitor,
    KnockDown,
    Overexpression,
    Sample,
    SkippedEntry,
    Tissue,
    Treatment,
    Tumour,
    Untargeted,
)
from .registry import NamedEntityRegistry

logger = logging.getLogger(__name__)

MATERIAL_TYPES = {
    CellLine.material_type: CellLine,
    Tumour.material_type: Tumour,
    Tissue.material_type: Tissue,
}

TREATMENT_TYPES = {
    cls.treatment_type: cls
    for cls in (Inhibitor, Activator, KnockDown, Overexpression, Untargeted)
}

# Optional experiment attributes and the names they are stored under
EXPERIMENT_ATTRIBUTES = {
    "name": "name",
    "project": "project",
    "contact person": "contact_person",
    "date": "date",
    "provider": "provider",
    "sequencing": "sequencing",
    "Dotmatics reference": "external_reference",
    "external reference": "external_reference",
}

EXTERNAL_REFERENCE_KEYS = ("Dotmatics reference", "external reference")


def load_metadata(path: Path) -> dict:
    """Read a metadata JSON document.

    Raises:
        MetadataError: If the file is not valid JSON or not a JSON object.
    """
    path = Path(path)
    logger.info("Reading experiment metadata from %s", path.name)
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except json.JSONDecodeError as exc:
        raise MetadataError(f"Invalid JSON in {path.name}: {exc}") from exc
    if not isinstance(document, dict):
        raise MetadataError(f"{path.name} does not contain a JSON object")
    return document


def _text(value) -> Optional[str]:
    """Metadata values may be numbers in JSON; attributes are strings."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _single_key(entry, section: str, known: Dict) -> Tuple[Optional[str], str]:
    """Return the one recognized type tag of a material/treatment entry."""
    if not isinstance(entry, dict):
        return None, f"{section[:-1]} entry is not an object"
    tags = [tag for tag in entry if tag in known]
    if not tags:
        return None, f"no recognized type (expected one of {', '.join(known)})"
    if len(tags) > 1 or len(entry) > 1:
        return None, f"expected exactly one type tag, found {', '.join(entry)}"
    if not isinstance(entry[tags[0]], dict):
        return None, f"details for type {tags[0]!r} are not an object"
    return tags[0], ""


class ExperimentMetadataAssembler:
    """Builds an ``Experiment`` and its ``NamedEntityRegistry`` from a document.

    Args:
        sink: Optional item sink.  Entities are stored through it, in the
            order they were built, only once the whole document has been
            assembled; a document that raises ``MetadataError`` stores nothing.
    """

    def __init__(self, sink=None) -> None:
        self.sink = sink
        self._pending: List = []

    def assemble(self, document: dict) -> Experiment:
        """Assemble one metadata document.

        Returns:
            The experiment, with its registry attached and skipped entries
            recorded in ``experiment.skipped``.

        Raises:
            MetadataError: On missing hard-required sections or references.
        """
        self._pending = []
        experiment = self._experiment(document)
        registry = experiment.registry

        materials = self._section(document, "materials", experiment, required=True)
        for name, entry in materials.items():
            self._material(experiment, registry, name, entry)

        treatments = self._section(document, "treatments", experiment, required=False)
        for name, entry in treatments.items():
            self._treatment(experiment, registry, name, entry)

        conditions = self._section(document, "conditions", experiment, required=True)
        for name, entry in conditions.items():
            self._condition(experiment, registry, name, entry)

        self._comparisons(experiment, registry, document.get("comparisons") or [])

        logger.info(
            "Assembled experiment %s: %d materials, %d treatments, %d conditions, "
            "%d samples, %d comparisons, %d skipped",
            experiment.short_name,
            len(registry.materials),
            len(registry.treatments),
            len(registry.conditions),
            len(registry.samples),
            len(registry.comparisons),
            len(experiment.skipped),
        )
        self._flush()
        return experiment

    # -----------------------------------------------------------------
    # Sections
    # -----------------------------------------------------------------

    def _experiment(self, document: dict) -> Experiment:
        section = document.get("experiment")
        if not isinstance(section, dict):
            raise MetadataError("missing 'experiment' section")
        short_name = _text(section.get("short name"))
        if not short_name:
            raise MetadataError("experiment has no 'short name'")

        attributes = {}
        for key, attribute in EXPERIMENT_ATTRIBUTES.items():
            value = _text(section.get(key))
            if value is not None:
                attributes.setdefault(attribute, value)

        experiment = Experiment(
            short_name=short_name,
            species=(_text(section.get("species")) or "human").lower(),
            attributes=attributes,
            registry=NamedEntityRegistry(),
        )
        logger.debug("Processing experiment %s (%s)", short_name, experiment.species)
        self._store(experiment)
        return experiment

    @staticmethod
    def _section(document: dict, name: str, experiment: Experiment, required: bool) -> dict:
        section = document.get(name)
        if section is None and not required:
            return {}
        if not isinstance(section, dict):
            raise MetadataError(f"missing or malformed '{name}' section", experiment.short_name)
        return section

    def _material(self, experiment: Experiment, registry: NamedEntityRegistry, name: str, entry):
        material_type, reason = _single_key(entry, "materials", MATERIAL_TYPES)
        if material_type is None:
            self._skip(experiment, "materials", name, reason)
            return

        details = entry[material_type]
        cls = MATERIAL_TYPES[material_type]
        kwargs = {"tissue": _text(details.get("tissue"))}
        if cls is CellLine:
            kwargs["cell_line_name"] = _text(details.get("name"))
        elif cls is Tumour:
            kwargs["primary_disease"] = _text(details.get("primary disease"))
            kwargs["disease_subtype"] = _text(details.get("disease subtype"))

        material = cls(name=name, experiment=experiment, **kwargs)
        registry.add_material(material)
        self._store(material)

    def _treatment(self, experiment: Experiment, registry: NamedEntityRegistry, name: str, entry):
        treatment_type, reason = _single_key(entry, "treatments", TREATMENT_TYPES)
        if treatment_type is None:
            self._skip(experiment, "treatments", name, reason)
            return

        details = entry[treatment_type]
        cls = TREATMENT_TYPES[treatment_type]
        targeted = cls in (Inhibitor, Activator)

        # "dose" for inhibitors/activators, "concentration" otherwise
        preferred, fallback = ("dose", "concentration") if targeted else ("concentration", "dose")
        dose_concentration = _text(details.get(preferred))
        if dose_concentration is None:
            dose_concentration = _text(details.get(fallback))

        kwargs = {
            "agent": _text(details.get("name")),
            "time_point": _text(details.get("time point")),
            "dose_concentration": dose_concentration,
        }
        if targeted:
            kwargs["target_gene"] = _text(details.get("target gene"))
            kwargs["external_reference"] = next(
                (
                    _text(details[key])
                    for key in EXTERNAL_REFERENCE_KEYS
                    if _text(details.get(key)) is not None
                ),
                None,
            )
        elif cls in (KnockDown, Overexpression):
            kwargs["perturbation_type"] = _text(details.get("type"))

        treatment = cls(name=name, experiment=experiment, **kwargs)
        registry.add_treatment(treatment)
        self._store(treatment)

    def _condition(self, experiment: Experiment, registry: NamedEntityRegistry, name: str, entry):
        if not isinstance(entry, dict):
            self._skip(experiment, "conditions", name, "condition entry is not an object")
            return
        if "material" not in entry:
            raise MetadataError(f"condition {name!r} has no 'material'", experiment.short_name)

        material_name = _text(entry.get("material"))
        material = registry.material(material_name) if material_name else None
        if material is None:
            self._skip(experiment, "conditions", name, f"unknown material {material_name!r}")
            return

        treatments = self._condition_treatments(experiment, registry, name, entry)
        if treatments is None:
            return

        samples_json = entry.get("samples")
        if not isinstance(samples_json, dict) or not samples_json:
            self._skip(experiment, "conditions", name, "no samples")
            return

        condition = Condition(
            name=name, material=material, treatments=treatments, experiment=experiment
        )
        try:
            samples = self._samples(experiment, condition, samples_json)
        except ValueError as exc:
            self._skip(experiment, "conditions", name, str(exc))
            return

        clashes = registry.has_samples(sample.name for sample in samples)
        if clashes:
            self._skip(
                experiment,
                "conditions",
                name,
                f"duplicate sample names: {', '.join(sorted(set(clashes)))}",
            )
            return

        condition.samples = samples
        registry.add_condition(condition)
        for sample in samples:
            self._store(sample)
        self._store(condition)

    def _condition_treatments(
        self, experiment: Experiment, registry: NamedEntityRegistry, name: str, entry: dict
    ) -> Optional[List[Treatment]]:
        """Resolve treatment names; ``None`` means the condition is dropped."""
        declared = entry.get("treatments") or []
        if not isinstance(declared, list):
            declared = [declared]

        treatments = []
        for treatment_name in declared:
            treatment = registry.treatment(_text(treatment_name) or "")
            if treatment is None:
                logger.warning(
                    "%s: condition %s references unknown treatment %r",
                    experiment.short_name,
                    name,
                    treatment_name,
                )
                continue
            treatments.append(treatment)

        if declared and not treatments:
            self._skip(experiment, "conditions", name, "none of its treatments could be resolved")
            return None
        return treatments

    @staticmethod
    def _samples(experiment: Experiment, condition: Condition, samples_json: dict) -> List[Sample]:
        """Expand sample entries into one Sample per technical replicate."""
        samples = []
        seen = set()
        for index, (entry_name, entry) in enumerate(samples_json.items(), start=1):
            if not isinstance(entry, dict):
                raise ValueError(f"sample {entry_name!r} is not an object")
            if "file" in entry:
                files = [entry["file"]]
            elif isinstance(entry.get("replicates"), list) and entry["replicates"]:
                files = entry["replicates"]
            else:
                raise ValueError(f"sample {entry_name!r} has neither 'file' nor 'replicates'")

            bio_replicate = f"{condition.name}_R{index}"
            label = _text(entry.get("label"))
            for replicate_file in files:
                replicate_file = _text(replicate_file)
                if not replicate_file:
                    raise ValueError(f"sample {entry_name!r} has an empty file name")
                sample_name = replicate_file.split(".", 1)[0]
                if sample_name in seen:
                    raise ValueError(f"duplicate sample name {sample_name!r}")
                seen.add(sample_name)
                samples.append(
                    Sample(
                        name=sample_name,
                        file=replicate_file,
                        bio_replicate=bio_replicate,
                        sample_entry=entry_name,
                        label=label,
                        condition=condition,
                        experiment=experiment,
                    )
                )
        return samples

    def _comparisons(self, experiment: Experiment, registry: NamedEntityRegistry, entries) -> None:
        for index, entry in enumerate(entries):
            try:
                treatment = _text(entry["treatment"]["name"])
                control = _text(entry["control"]["name"])
            except (KeyError, TypeError):
                self._skip(experiment, "comparisons", str(index), "expected treatment/control names")
                continue
            if not treatment or not control:
                self._skip(experiment, "comparisons", str(index), "empty condition name")
                continue

            comparison = Comparison(treatment=treatment, control=control)
            for role, condition_name in (("treatment", treatment), ("control", control)):
                if registry.condition(condition_name) is None:
                    logger.warning(
                        "%s: comparison %s refers to unknown %s condition %s",
                        experiment.short_name,
                        comparison.label,
                        role,
                        condition_name,
                    )
            registry.add_comparison(comparison)
            experiment.comparisons.append(comparison)

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------

    @staticmethod
    def _skip(experiment: Experiment, section: str, key: str, reason: str) -> None:
        logger.warning("%s: skipping %s entry %s: %s", experiment.short_name, section, key, reason)
        experiment.skipped.append(SkippedEntry(section=section, key=key, reason=reason))

    def _store(self, entity) -> None:
        self._pending.append(entity)

    def _flush(self) -> None:
        pending, self._pending = self._pending, []
        if self.sink is not None:
            for entity in pending:
                self.sink.store(entity)
