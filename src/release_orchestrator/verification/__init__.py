"""Runtime verification of built artifacts."""

from release_orchestrator.verification.health import (
    COMPOSE_HEALTH_POLICY,
    CONTAINER_HEALTH_POLICY,
    CommandProbe,
    HealthOutcome,
    HealthPolicy,
    HealthStatus,
    HealthVerifier,
    Probe,
    ProbeResult,
    SleepFn,
    health_url,
)

__all__ = [
    "COMPOSE_HEALTH_POLICY",
    "CONTAINER_HEALTH_POLICY",
    "CommandProbe",
    "HealthOutcome",
    "HealthPolicy",
    "HealthStatus",
    "HealthVerifier",
    "Probe",
    "ProbeResult",
    "SleepFn",
    "health_url",
]
