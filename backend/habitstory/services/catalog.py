"""Archetype configuration and the default task-template catalog."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from habitstory.db.models.task_template import TaskTemplate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HouseConfig:
    house: str
    # window name -> ordered template keys; the head is the house default.
    schedule: Dict[str, Tuple[str, ...]]


@dataclass(frozen=True)
class ClassConfig:
    house_class: str
    house: str
    defaults: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TemplateSpec:
    key: str
    title: str
    description: str
    modality: str
    min_duration: int
    max_duration: int
    difficulty: int
    house_tags: Tuple[str, ...]
    is_core: bool = False


HOUSES: Dict[str, HouseConfig] = {
    config.house: config
    for config in (
        HouseConfig(
            "MONK",
            {
                "morning": ("first_breath", "vipassana_scan_20min"),
                "midday": ("breath_box_5min",),
                "evening": ("loving_kindness_20min", "gratitude_reflection"),
            },
        ),
        HouseConfig(
            "WARRIOR_MONK",
            {
                "morning": ("mobility_flow_15min", "power_breath_10min"),
                "midday": ("breath_box_5min",),
                "evening": ("stretch_restore_10min",),
            },
        ),
        HouseConfig(
            "SAGE",
            {
                "morning": ("vipassana_scan_20min", "contemplation_walk"),
                "midday": ("contemplation_walk",),
                "evening": ("reflection_journal_15min", "gratitude_reflection"),
            },
        ),
        HouseConfig(
            "ARTISAN",
            {
                "morning": ("mobility_flow_15min",),
                "midday": ("creative_flow_20min",),
                "evening": ("expressive_movement", "gratitude_reflection"),
            },
        ),
        HouseConfig(
            "OPERATIVE",
            {
                "morning": ("breath_box_10min", "calisthenics_pyramid"),
                "midday": ("tactical_meditation",),
                "evening": ("strategic_visualization",),
            },
        ),
        HouseConfig(
            "COUNCILOR",
            {
                "morning": ("empathy_meditation",),
                "midday": ("breath_box_5min",),
                "evening": ("reflection_journal_15min", "strategic_visualization"),
            },
        ),
    )
}

CLASSES: Dict[str, ClassConfig] = {
    config.house_class: config
    for config in (
        ClassConfig("VIPASSANA_FIRST", "MONK", {"morning": "vipassana_scan_30min"}),
        ClassConfig("BREATH_FIRST", "MONK", {"morning": "breath_box_10min", "midday": "breath_box_5min"}),
        ClassConfig("MOBILITY_FOCUS", "WARRIOR_MONK", {"morning": "mobility_flow_15min"}),
        ClassConfig("POWER_FOCUS", "WARRIOR_MONK", {"morning": "power_breath_10min", "midday": "calisthenics_pyramid"}),
        ClassConfig("REFLECTION_PATH", "SAGE", {"evening": "reflection_journal_15min"}),
        ClassConfig("STUDY_PATH", "SAGE", {"midday": "contemplation_walk"}),
        ClassConfig("VISUAL_CREATIVE", "ARTISAN", {"midday": "creative_flow_20min"}),
        ClassConfig("MOVEMENT_CREATIVE", "ARTISAN", {"evening": "expressive_movement"}),
        ClassConfig("PRECISION_TRAINING", "OPERATIVE", {"midday": "tactical_meditation"}),
        ClassConfig("ENDURANCE_TRAINING", "OPERATIVE", {"morning": "calisthenics_pyramid"}),
        ClassConfig("STRATEGIC_MIND", "COUNCILOR", {"evening": "strategic_visualization"}),
        ClassConfig("EMPATHIC_LEADER", "COUNCILOR", {"morning": "empathy_meditation"}),
    )
}

DEFAULT_TASK_TEMPLATES: Tuple[TemplateSpec, ...] = (
    TemplateSpec(
        "first_breath",
        "Your First Mindful Breath",
        "Two minutes of conscious breathing to open the day",
        "BREATH",
        120,
        300,
        1,
        ("MONK",),
        is_core=True,
    ),
    TemplateSpec(
        "vipassana_scan_30min",
        "Vipassana Body Scan",
        "Systematic observation of bodily sensations without judgment",
        "MEDITATION",
        1800,
        3600,
        3,
        ("MONK", "SAGE"),
        is_core=True,
    ),
    TemplateSpec(
        "vipassana_scan_20min",
        "Short Vipassana Scan",
        "Condensed body scan meditation",
        "MEDITATION",
        1200,
        1800,
        2,
        ("MONK", "WARRIOR_MONK", "SAGE"),
        is_core=True,
    ),
    TemplateSpec(
        "loving_kindness_20min",
        "Loving Kindness Meditation",
        "Cultivate compassion for self and others",
        "MEDITATION",
        1200,
        2400,
        2,
        ("MONK", "COUNCILOR"),
    ),
    TemplateSpec(
        "breath_box_10min",
        "Box Breathing",
        "4-4-4-4 breathing pattern for calm and focus",
        "BREATH",
        600,
        900,
        1,
        ("MONK", "OPERATIVE", "WARRIOR_MONK"),
        is_core=True,
    ),
    TemplateSpec(
        "breath_box_5min",
        "Quick Box Breathing",
        "Short box breathing session",
        "BREATH",
        300,
        600,
        1,
        ("ALL",),
        is_core=True,
    ),
    TemplateSpec(
        "power_breath_10min",
        "Power Breathing",
        "Energizing breath work for warriors",
        "BREATH",
        600,
        900,
        3,
        ("WARRIOR_MONK", "OPERATIVE"),
    ),
    TemplateSpec(
        "mobility_flow_15min",
        "Morning Mobility Flow",
        "Full body movement to awaken and energize",
        "MOBILITY",
        900,
        1200,
        2,
        ("WARRIOR_MONK", "ARTISAN"),
        is_core=True,
    ),
    TemplateSpec(
        "calisthenics_pyramid",
        "Calisthenics Pyramid",
        "Progressive bodyweight strength training",
        "STRENGTH",
        900,
        1800,
        3,
        ("WARRIOR_MONK", "OPERATIVE"),
    ),
    TemplateSpec(
        "stretch_restore_10min",
        "Evening Restoration",
        "Gentle stretching for recovery",
        "MOBILITY",
        600,
        900,
        1,
        ("ALL",),
        is_core=True,
    ),
    TemplateSpec(
        "strategic_visualization",
        "Strategic Visualization",
        "Mental rehearsal for leaders",
        "VISUALIZATION",
        600,
        1200,
        2,
        ("COUNCILOR", "OPERATIVE"),
    ),
    TemplateSpec(
        "creative_flow_20min",
        "Creative Visualization",
        "Unlock creative potential through imagery",
        "VISUALIZATION",
        1200,
        1800,
        2,
        ("ARTISAN", "SAGE"),
    ),
    TemplateSpec(
        "reflection_journal_15min",
        "Evening Reflection",
        "Written exploration of the day's lessons",
        "JOURNAL",
        900,
        1800,
        1,
        ("SAGE", "COUNCILOR"),
        is_core=True,
    ),
    TemplateSpec(
        "gratitude_reflection",
        "Gratitude Practice",
        "Cultivate appreciation and abundance mindset",
        "JOURNAL",
        600,
        900,
        1,
        ("ALL",),
        is_core=True,
    ),
    TemplateSpec(
        "tactical_meditation",
        "Tactical Meditation",
        "High-performance focus training",
        "MEDITATION",
        900,
        1200,
        3,
        ("OPERATIVE",),
    ),
    TemplateSpec(
        "empathy_meditation",
        "Empathic Attunement",
        "Develop deeper connection with others",
        "MEDITATION",
        600,
        1200,
        2,
        ("COUNCILOR",),
    ),
    TemplateSpec(
        "expressive_movement",
        "Expressive Movement",
        "Free-form movement meditation",
        "MOBILITY",
        900,
        1800,
        2,
        ("ARTISAN",),
    ),
    TemplateSpec(
        "contemplation_walk",
        "Walking Contemplation",
        "Mindful walking with philosophical inquiry",
        "REFLECTION",
        1200,
        2400,
        2,
        ("SAGE",),
    ),
)


def get_house_config(house: str) -> Optional[HouseConfig]:
    return HOUSES.get(house)


def get_class_config(house_class: Optional[str]) -> Optional[ClassConfig]:
    if not house_class:
        return None
    return CLASSES.get(house_class)


def seed_task_templates(db: Session, specs: Tuple[TemplateSpec, ...] = DEFAULT_TASK_TEMPLATES) -> List[TaskTemplate]:
    """Insert catalog templates that are not yet stored; existing rows are left untouched."""
    existing = {row.key for row in db.query(TaskTemplate.key).all()}
    created: List[TaskTemplate] = []
    for spec in specs:
        if spec.key in existing:
            continue
        template = TaskTemplate(
            key=spec.key,
            title=spec.title,
            description=spec.description,
            modality=spec.modality,
            min_duration=spec.min_duration,
            max_duration=spec.max_duration,
            difficulty=spec.difficulty,
            house_tags=list(spec.house_tags),
            is_core=spec.is_core,
        )
        db.add(template)
        created.append(template)
    if created:
        db.commit()
        logger.info("Seeded %s task templates", len(created))
    return created
