from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Union

from periods import MonthKey
from snapshot import BucketConfig, MonthConfigRecord, TemplateRecord


EMPTY_BUCKET_CONFIG = BucketConfig()


class ValueSource(str, Enum):
    template = "template"
    override = "override"
    none = "none"


class EntityKind(str, Enum):
    group = "group"
    sub_category = "sub_category"
    bucket = "bucket"


@dataclass(frozen=True)
class EffectiveValue:
    source: ValueSource
    value: Union[int, BucketConfig]
    template_name: Optional[str] = None

    @property
    def is_overridden(self) -> bool:
        return self.source == ValueSource.override


def find_month_config(
    month_key: MonthKey, month_configs: Iterable[MonthConfigRecord]
) -> Optional[MonthConfigRecord]:
    for config in month_configs:
        if config.month == month_key:
            return config
    return None


def governing_template(
    config: Optional[MonthConfigRecord], templates: Iterable[TemplateRecord]
) -> Optional[TemplateRecord]:
    """Template assigned to the month, else the default template.

    An assignment pointing at a template that no longer exists is ignored.
    """
    templates = list(templates)
    if config is not None and config.template_id is not None:
        for template in templates:
            if template.id == config.template_id:
                return template
    for template in templates:
        if template.is_default:
            return template
    return None


def _is_deleted(value: object) -> bool:
    return bool(getattr(value, "is_explicitly_deleted", False))


class MonthResolver:
    """Resolves effective values for one month: override, then template, then 0."""

    def __init__(
        self,
        month_key: MonthKey,
        templates: Iterable[TemplateRecord],
        month_configs: Iterable[MonthConfigRecord],
    ) -> None:
        self.month_key = month_key
        self.config = find_month_config(month_key, month_configs)
        self.template = governing_template(self.config, templates)

    @property
    def template_name(self) -> Optional[str]:
        return self.template.name if self.template else None

    @property
    def is_locked(self) -> bool:
        return bool(self.config and self.config.is_locked)

    def _resolve(self, overrides, template_values, entity_id: int, empty):
        override = overrides.get(entity_id) if overrides else None
        if override is not None and not _is_deleted(override):
            return EffectiveValue(ValueSource.override, override, self.template_name)
        if self.template is None:
            return EffectiveValue(ValueSource.none, empty, None)
        return EffectiveValue(
            ValueSource.template,
            template_values.get(entity_id, empty),
            self.template.name,
        )

    def sub_category_budget(self, sub_category_id: int) -> EffectiveValue:
        return self._resolve(
            self.config.sub_category_overrides if self.config else None,
            self.template.sub_category_values if self.template else {},
            sub_category_id,
            0,
        )

    def group_limit(self, group_id: int) -> EffectiveValue:
        return self._resolve(
            self.config.group_overrides if self.config else None,
            self.template.group_values if self.template else {},
            group_id,
            0,
        )

    def bucket_config(self, bucket_id: int) -> EffectiveValue:
        return self._resolve(
            self.config.bucket_overrides if self.config else None,
            self.template.bucket_values if self.template else {},
            bucket_id,
            EMPTY_BUCKET_CONFIG,
        )

    def resolve(self, kind: EntityKind, entity_id: int) -> EffectiveValue:
        if kind == EntityKind.group:
            return self.group_limit(entity_id)
        if kind == EntityKind.sub_category:
            return self.sub_category_budget(entity_id)
        return self.bucket_config(entity_id)


def resolve_effective_value(
    kind: EntityKind,
    entity_id: int,
    month_key: MonthKey,
    templates: Iterable[TemplateRecord],
    month_configs: Iterable[MonthConfigRecord],
) -> EffectiveValue:
    return MonthResolver(month_key, templates, month_configs).resolve(kind, entity_id)
