"""
Scheduling Module

Provides conflict detection, compatibility scoring, alternative-time
suggestions and batch auto-scheduling for therapy sessions.

Usage:
    from app.core.scheduling import (
        detect_scheduling_conflicts,
        suggest_alternative_times,
        optimize_schedule,
        clear_schedule_cache,
    )

    # Validate a proposed session
    conflicts = detect_scheduling_conflicts(
        "2025-05-19T11:00:00Z",
        "2025-05-19T12:00:00Z",
        therapist.id,
        client.id,
        existing_sessions,
        therapist,
        client,
    )

    # Batch-assign clients, then drop cached scores
    plan = await optimize_schedule(clients, therapists, sessions, constraints)
    clear_schedule_cache()
"""

# Data model
from app.core.scheduling.models import (
    Alternative,
    Assignment,
    AssignmentPlan,
    Client,
    Conflict,
    ConflictType,
    ExistingSession,
    OptimizationConstraints,
    SchedulingValidationError,
    SessionStatus,
    Severity,
    Therapist,
    TimeWindow,
    UnassignedClient,
    WeeklyAvailability,
    Weekday,
)
from app.core.scheduling.state import BatchState

# Core components
from app.core.scheduling.intervals import intervals_overlap, is_within_availability
from app.core.scheduling.conflicts import detect_conflicts
from app.core.scheduling.cache import MemoizationCache
from app.core.scheduling.scoring import CompatibilityScorer, compute_compatibility
from app.core.scheduling.recommender import (
    AlternativeRecommender,
    AlternativeRequest,
    HttpAlternativeRecommender,
    get_recommender,
)
from app.core.scheduling.alternatives import AlternativeSuggester
from app.core.scheduling.optimizer import ScheduleOptimizer, validate_plan

# Scheduling Engine (main orchestrator)
from app.core.scheduling.engine import (
    SchedulingEngine,
    get_scheduling_engine,
    detect_scheduling_conflicts,
    suggest_alternative_times,
    optimize_schedule,
    clear_schedule_cache,
)

__all__ = [
    # Data model
    "Alternative",
    "Assignment",
    "AssignmentPlan",
    "BatchState",
    "Client",
    "Conflict",
    "ConflictType",
    "ExistingSession",
    "OptimizationConstraints",
    "SchedulingValidationError",
    "SessionStatus",
    "Severity",
    "Therapist",
    "TimeWindow",
    "UnassignedClient",
    "WeeklyAvailability",
    "Weekday",
    # Core components
    "intervals_overlap",
    "is_within_availability",
    "detect_conflicts",
    "MemoizationCache",
    "CompatibilityScorer",
    "compute_compatibility",
    "AlternativeRecommender",
    "AlternativeRequest",
    "HttpAlternativeRecommender",
    "get_recommender",
    "AlternativeSuggester",
    "ScheduleOptimizer",
    "validate_plan",
    # Scheduling Engine
    "SchedulingEngine",
    "get_scheduling_engine",
    "detect_scheduling_conflicts",
    "suggest_alternative_times",
    "optimize_schedule",
    "clear_schedule_cache",
]
