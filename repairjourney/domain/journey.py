from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
import json
from typing import Any, Mapping

from repairjourney.domain.models import RepairAnalytics, RepairSession, UserInteraction


PHASE_SUBMISSION = "submission"
PHASE_DIAGNOSTICS = "diagnostics"
PHASE_ISSUE_CONFIRMATION = "issue_confirmation"
PHASE_REPAIR_GUIDE = "repair_guide"

# Subfolders that only hold consolidated snapshots or per-event artifacts.
PHASE_COMPLETE_JOURNEY = "complete_journey"
PHASE_INTERACTIONS = "interactions"

JOURNEY_PHASES = (PHASE_SUBMISSION, PHASE_DIAGNOSTICS, PHASE_ISSUE_CONFIRMATION, PHASE_REPAIR_GUIDE)
SESSION_SUBFOLDERS = JOURNEY_PHASES + (PHASE_INTERACTIONS, PHASE_COMPLETE_JOURNEY)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def json_default(value: Any) -> Any:
    # Row timestamps and dates serialize as ISO strings in every artifact.
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize_artifact(payload: Mapping[str, Any]) -> bytes:
    # Pretty-printed UTF-8 so stored artifacts stay human-auditable.
    return json.dumps(payload, indent=2, ensure_ascii=False, default=json_default).encode("utf-8")


@dataclass(frozen=True)
class JourneyState:
    """Phase results accumulated for one session.

    Mirrors the phase columns on ``repair_sessions``; a new state is produced for
    every consolidation and written back in the same row update as ``metadata_url``.
    """

    initial_submission: dict[str, Any] | None = None
    diagnostics: tuple[Any, ...] = ()
    issue_confirmation: dict[str, Any] | None = None
    repair_guide: dict[str, Any] | None = None

    @classmethod
    def from_session(cls, repair_session: RepairSession) -> "JourneyState":
        return cls(
            initial_submission=repair_session.initial_submission,
            diagnostics=tuple(repair_session.diagnostic_results or ()),
            issue_confirmation=repair_session.issue_confirmation,
            repair_guide=repair_session.repair_guide,
        )

    def apply(self, overrides: Mapping[str, Any] | None) -> "JourneyState":
        """Merge phase overrides into a new state.

        Diagnostics append one entry per call. Submission, issue confirmation and
        repair guide replace the previous value outright.
        """
        if not overrides:
            return self
        unknown = set(overrides) - set(JOURNEY_PHASES)
        if unknown:
            raise ValueError(f"Unknown journey phase(s): {', '.join(sorted(unknown))}")
        state = self
        if PHASE_SUBMISSION in overrides:
            state = replace(state, initial_submission=dict(overrides[PHASE_SUBMISSION]))
        if PHASE_DIAGNOSTICS in overrides:
            state = replace(state, diagnostics=state.diagnostics + (overrides[PHASE_DIAGNOSTICS],))
        if PHASE_ISSUE_CONFIRMATION in overrides:
            state = replace(state, issue_confirmation=dict(overrides[PHASE_ISSUE_CONFIRMATION]))
        if PHASE_REPAIR_GUIDE in overrides:
            state = replace(state, repair_guide=dict(overrides[PHASE_REPAIR_GUIDE]))
        return state

    def has_all_training_phases(self) -> bool:
        # A recorded phase counts even when its payload is empty; only a missing one does not.
        return (
            bool(self.diagnostics)
            and self.issue_confirmation is not None
            and self.repair_guide is not None
        )

    def column_values(self) -> dict[str, Any]:
        return {
            "initial_submission": self.initial_submission,
            "diagnostic_results": list(self.diagnostics),
            "issue_confirmation": self.issue_confirmation,
            "repair_guide": self.repair_guide,
        }


def default_initial_submission(repair_session: RepairSession) -> dict[str, Any]:
    # Projection of the submission form columns when no explicit payload was recorded.
    return {
        "deviceType": repair_session.device_type or "",
        "deviceBrand": repair_session.device_brand or "",
        "deviceModel": repair_session.device_model or "",
        "issueDescription": repair_session.issue_description or "",
        "symptoms": list(repair_session.symptoms or []),
        "timestamp": _isoformat(repair_session.created_at),
        "userId": repair_session.user_id,
    }


def interaction_record(row: UserInteraction) -> dict[str, Any]:
    return {
        "id": row.id,
        "userId": row.user_id,
        "repairRequestId": row.repair_request_id,
        "interactionType": row.interaction_type,
        "content": row.content,
        "createdAt": _isoformat(row.created_at),
    }


def analytics_record(row: RepairAnalytics) -> dict[str, Any]:
    return {
        "id": row.id,
        "repairRequestId": row.repair_request_id,
        "eventType": row.event_type,
        "eventData": row.event_data,
        "createdAt": _isoformat(row.created_at),
    }


@dataclass(frozen=True)
class ConsolidatedJourneyDocument:
    # Object-store payload only; never stored relationally.
    session_id: int
    timestamp: str
    initial_submission: dict[str, Any]
    diagnostics: list[Any]
    issue_confirmation: dict[str, Any]
    repair_guide: dict[str, Any]
    interactions: list[dict[str, Any]] = field(default_factory=list)
    analytics: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "initialSubmission": self.initial_submission,
            "diagnostics": self.diagnostics,
            "issueConfirmation": self.issue_confirmation,
            "repairGuide": self.repair_guide,
            "interactions": self.interactions,
            "analytics": self.analytics,
            "metadata": self.metadata,
        }

    def to_bytes(self) -> bytes:
        return serialize_artifact(self.to_dict())


def build_document(
    repair_session: RepairSession,
    state: JourneyState,
    *,
    interactions: list[UserInteraction],
    analytics: list[RepairAnalytics],
    schema_version: str,
    source: str,
    now: datetime | None = None,
) -> ConsolidatedJourneyDocument:
    """Assemble the consolidated document for one session from its merged state."""
    stamp = (now or _utc_now()).isoformat()
    initial = state.initial_submission
    if initial is None:
        initial = default_initial_submission(repair_session)
    return ConsolidatedJourneyDocument(
        session_id=repair_session.id,
        timestamp=stamp,
        initial_submission=initial,
        diagnostics=list(state.diagnostics),
        issue_confirmation=state.issue_confirmation or {},
        repair_guide=state.repair_guide or {},
        interactions=[interaction_record(row) for row in interactions],
        analytics=[analytics_record(row) for row in analytics],
        metadata={
            "version": schema_version,
            "source": source,
            "syncTimestamp": stamp,
            "aiTrainingReady": state.has_all_training_phases(),
        },
    )
