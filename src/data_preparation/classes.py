"""
Class taxonomy and per-class quotas for the stationery dataset.

The registry is the single source of truth for class ids: a class id is both
the YOLO label index written by the converter and the position of the class
name in the generated data.yaml. Ids must therefore be dense over [0, N-1].

Author: Stationery Dataset Builder Team
Date: October 2026
"""

import logging
from typing import Iterator, List, NamedTuple, Sequence, Tuple

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


# (name, Open Images category code), index = class id
STATIONERY_CLASSES: Tuple[Tuple[str, str], ...] = (
    ("Pen", "/m/0k1tl"),
    ("Pencil case", "/m/05676x"),
    ("Pencil sharpener", "/m/02ddwp"),
    ("Eraser", "/m/02fh7f"),
    ("Ruler", "/m/0hdln"),
    ("Scissors", "/m/01lsmm"),
    ("Calculator", "/m/024d2"),
    ("Stapler", "/m/025fsf"),
    ("Adhesive tape", "/m/03m3vtv"),
    ("Paper towel", "/m/02w3r3"),
    ("Paper cutter", "/m/080n7g"),
    ("Laptop", "/m/01c648"),
    ("Computer keyboard", "/m/01m2v"),
    ("Computer mouse", "/m/020lf"),
    ("Mobile phone", "/m/050k8"),
    ("Tablet computer", "/m/0bh9flk"),
    ("Clock", "/m/01x3z"),
    ("Alarm clock", "/m/046dlr"),
    ("Digital clock", "/m/06_72j"),
    ("Lamp", "/m/0dtln"),
    ("Flashlight", "/m/01kb5b"),
    ("Box", "/m/025dyy"),
    ("Bottle", "/m/04dr76w"),
    ("Mug", "/m/02jvh9"),
    ("Coffee cup", "/m/02p5f1q"),
    ("Measuring cup", "/m/07v9_z"),
    ("Handbag", "/m/080hkjn"),
    ("Plastic bag", "/m/05gqfk"),
    ("Glasses", "/m/0jyfg"),
    ("Backpack", "/m/01940j"),
    ("Ring binder", "/m/04zwwv"),
    ("Book", "/m/0bt_c3"),
)


class ClassDefinition(NamedTuple):
    """One detection category."""

    id: int
    name: str
    remote_code: str

    @property
    def safe_name(self) -> str:
        """Name with spaces replaced, as used for the toolkit dataset folder."""
        return self.name.replace(" ", "_")

    def __str__(self) -> str:
        return f"'{self.name}' (ID {self.id})"


class Quota:
    """
    Per-class image quotas.

    A class counts as complete once its normalized train examples reach
    ``min_required_images``, i.e. ``completion_threshold_percent`` of the
    train target, rounded down.
    """

    def __init__(self, per_class_train_target: int = 250, per_class_val_target: int = 50,
                 completion_threshold_percent: int = 90):
        for name, value in (('per_class_train_target', per_class_train_target),
                            ('per_class_val_target', per_class_val_target)):
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if (not isinstance(completion_threshold_percent, int)
                or not 1 <= completion_threshold_percent <= 100):
            raise ConfigurationError(
                f"completion_threshold_percent must be between 1 and 100, got {completion_threshold_percent!r}"
            )

        self.per_class_train_target = per_class_train_target
        self.per_class_val_target = per_class_val_target
        self.completion_threshold_percent = completion_threshold_percent

    @property
    def min_required_images(self) -> int:
        return self.per_class_train_target * self.completion_threshold_percent // 100

    def target_for_split(self, split: str) -> int:
        """Raw image target for an output split ('train' or 'val')."""
        if split == 'train':
            return self.per_class_train_target
        if split == 'val':
            return self.per_class_val_target
        raise ValueError(f"Unknown split: {split}")

    @classmethod
    def from_config(cls, config) -> "Quota":
        return cls(
            per_class_train_target=config.get('quota.per_class_train_target', 250),
            per_class_val_target=config.get('quota.per_class_val_target', 50),
            completion_threshold_percent=config.get('quota.completion_threshold_percent', 90),
        )

    def __repr__(self) -> str:
        return (f"Quota(train={self.per_class_train_target}, val={self.per_class_val_target}, "
                f"threshold={self.completion_threshold_percent}%, min_required={self.min_required_images})")


class ClassRegistry:
    """
    Ordered, immutable collection of class definitions.

    Args:
        entries: Sequence of (name, remote_code) pairs; position is the class id.

    Raises:
        ConfigurationError: If the registry is empty or a name is duplicated.
    """

    def __init__(self, entries: Sequence[Tuple[str, str]] = STATIONERY_CLASSES):
        if not entries:
            raise ConfigurationError("Class registry must contain at least one class")

        names = [name for name, _ in entries]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate class names in registry: {duplicates}")

        self._classes: Tuple[ClassDefinition, ...] = tuple(
            ClassDefinition(class_id, name, code) for class_id, (name, code) in enumerate(entries)
        )

    def __len__(self) -> int:
        return len(self._classes)

    def __iter__(self) -> Iterator[ClassDefinition]:
        return iter(self._classes)

    def __getitem__(self, class_id: int) -> ClassDefinition:
        return self._classes[class_id]

    @property
    def max_class_id(self) -> int:
        return len(self._classes) - 1

    @property
    def names(self) -> List[str]:
        return [c.name for c in self._classes]

    def by_name(self, name: str) -> ClassDefinition:
        for class_def in self._classes:
            if class_def.name == name:
                return class_def
        raise KeyError(name)

    def in_range(self, start: int, end: int) -> List[ClassDefinition]:
        """Classes with ``start <= id <= end``. The range must already be validated."""
        return [c for c in self._classes if start <= c.id <= end]
