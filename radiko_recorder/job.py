"""
録音ジョブモジュール

録音ジョブの状態を不変スナップショットとして表し、状態遷移は純粋関数で行います。
Pending → Authenticating → ResolvingPlaylist → Fetching → Finalizing → Completed
どの状態からでも Failed へ遷移でき、Completed / Failed は終端状態です。
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple

from .auth import AuthSession
from .error_handler import RecorderError
from .playlist import TimeWindow
from .station_catalog import Station


class JobStatus(Enum):
    PENDING = "pending"
    AUTHENTICATING = "authenticating"
    RESOLVING_PLAYLIST = "resolving_playlist"
    FETCHING = "fetching"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# 正常系の遷移順
_FORWARD_ORDER = (
    JobStatus.PENDING,
    JobStatus.AUTHENTICATING,
    JobStatus.RESOLVING_PLAYLIST,
    JobStatus.FETCHING,
    JobStatus.FINALIZING,
    JobStatus.COMPLETED,
)


class InvalidTransitionError(ValueError):
    """許可されていない状態遷移"""


@dataclass(frozen=True)
class RecordingJob:
    """録音ジョブのスナップショット"""
    station: Station
    window: TimeWindow
    output_target: str
    session: Optional[AuthSession] = None
    status: JobStatus = JobStatus.PENDING
    error: Optional[RecorderError] = None
    history: Tuple[JobStatus, ...] = field(default=(JobStatus.PENDING,))

    def with_session(self, session: AuthSession) -> 'RecordingJob':
        """セッションを丸ごと置き換えた新しいスナップショット"""
        return replace(self, session=session)


def transition(job: RecordingJob, status: JobStatus,
               error: Optional[RecorderError] = None) -> RecordingJob:
    """状態遷移（純粋関数）

    Raises:
        InvalidTransitionError: 終端状態からの遷移、逆行・飛び越し、
            Failed 以外へのエラー付与、Failed へのエラーなし遷移
    """
    if job.status.is_terminal:
        raise InvalidTransitionError(f"終端状態 {job.status.value} からは遷移できません")

    if status is JobStatus.FAILED:
        if error is None:
            raise InvalidTransitionError("Failed への遷移には原因エラーが必要です")
    else:
        if error is not None:
            raise InvalidTransitionError("エラーを付与できるのは Failed への遷移のみです")
        current = _FORWARD_ORDER.index(job.status)
        if _FORWARD_ORDER.index(status) != current + 1:
            raise InvalidTransitionError(
                f"{job.status.value} から {status.value} へは遷移できません")

    return replace(job, status=status, error=error, history=job.history + (status,))


@dataclass(frozen=True)
class RecordingResult:
    """録音結果データクラス"""
    job: RecordingJob
    output_path: str
    bytes_written: int
    segments_total: int
    segments_written: int
    reauth_count: int
    elapsed_seconds: float

    @property
    def success(self) -> bool:
        return self.job.status is JobStatus.COMPLETED

    @property
    def error(self) -> Optional[RecorderError]:
        return self.job.error
