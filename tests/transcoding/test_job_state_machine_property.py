"""Property-based tests for job and video status rules.

**Feature: earntrack-media, Property 2: Job Status Monotonicity**
**Feature: earntrack-media, Property 3: Video Status Aggregation**
"""

from hypothesis import given, settings, strategies as st

from earntrack_media.modules.transcoding.models import TranscodeStatus
from earntrack_media.modules.transcoding.service import aggregate_status
from earntrack_media.modules.video.models import VideoStatus

job_status_strategy = st.sampled_from(list(TranscodeStatus))
video_status_strategy = st.sampled_from(list(VideoStatus))
terminal_strategy = st.sampled_from([TranscodeStatus.COMPLETED, TranscodeStatus.FAILED])


class TestJobTransitions:
    """Jobs move PENDING -> PROCESSING -> COMPLETED | FAILED, never back."""

    @given(target=job_status_strategy)
    @settings(max_examples=50)
    def test_terminal_status_is_final(self, target: TranscodeStatus) -> None:
        """**Feature: earntrack-media, Property 2: Job Status Monotonicity**

        A COMPLETED or FAILED job SHALL NOT transition anywhere.
        """
        assert not TranscodeStatus.can_transition(TranscodeStatus.COMPLETED, target)
        assert not TranscodeStatus.can_transition(TranscodeStatus.FAILED, target)

    @given(current=job_status_strategy)
    @settings(max_examples=50)
    def test_no_transition_back_to_pending(self, current: TranscodeStatus) -> None:
        """**Feature: earntrack-media, Property 2: Job Status Monotonicity**

        No job SHALL ever return to PENDING.
        """
        assert not TranscodeStatus.can_transition(current, TranscodeStatus.PENDING)

    def test_allowed_transitions(self) -> None:
        assert TranscodeStatus.can_transition(TranscodeStatus.PENDING, TranscodeStatus.PROCESSING)
        assert TranscodeStatus.can_transition(TranscodeStatus.PENDING, TranscodeStatus.FAILED)
        assert TranscodeStatus.can_transition(TranscodeStatus.PROCESSING, TranscodeStatus.COMPLETED)
        assert TranscodeStatus.can_transition(TranscodeStatus.PROCESSING, TranscodeStatus.FAILED)
        assert not TranscodeStatus.can_transition(TranscodeStatus.PENDING, TranscodeStatus.COMPLETED)

    def test_terminal_flag(self) -> None:
        assert {s for s in TranscodeStatus if s.is_terminal} == {
            TranscodeStatus.COMPLETED,
            TranscodeStatus.FAILED,
        }


class TestVideoTransitions:
    """Video status only moves forward."""

    @given(current=video_status_strategy, target=video_status_strategy)
    @settings(max_examples=100)
    def test_transition_only_to_higher_rank(self, current: VideoStatus, target: VideoStatus) -> None:
        """**Feature: earntrack-media, Property 2: Job Status Monotonicity**

        A video SHALL only transition to a strictly higher ranked status.
        """
        assert VideoStatus.can_transition(current, target) == (target.rank > current.rank)

    def test_ready_never_degrades(self) -> None:
        for target in VideoStatus:
            assert not VideoStatus.can_transition(VideoStatus.READY, target)

    def test_failed_can_recover_to_ready(self) -> None:
        assert VideoStatus.can_transition(VideoStatus.FAILED, VideoStatus.READY)
        assert not VideoStatus.can_transition(VideoStatus.FAILED, VideoStatus.PROCESSING)


class TestAggregateStatus:
    """Video status derived from its jobs."""

    @given(statuses=st.lists(terminal_strategy, min_size=1, max_size=15))
    @settings(max_examples=100)
    def test_settled_jobs_decide_ready_or_failed(self, statuses: list[TranscodeStatus]) -> None:
        """**Feature: earntrack-media, Property 3: Video Status Aggregation**

        Once every job has settled, the video SHALL be READY iff at least one
        job completed, and FAILED otherwise.
        """
        expected = VideoStatus.READY if TranscodeStatus.COMPLETED in statuses else VideoStatus.FAILED
        assert aggregate_status(statuses) == expected

    @given(
        settled=st.lists(terminal_strategy, max_size=10),
        unsettled=st.lists(
            st.sampled_from([TranscodeStatus.PENDING, TranscodeStatus.PROCESSING]),
            min_size=1,
            max_size=5,
        ),
    )
    @settings(max_examples=100)
    def test_unsettled_jobs_leave_video_alone(self, settled, unsettled) -> None:
        """**Feature: earntrack-media, Property 3: Video Status Aggregation**

        While any job is PENDING or PROCESSING, no aggregate status SHALL be produced.
        """
        assert aggregate_status(settled + unsettled) is None

    @given(statuses=st.lists(job_status_strategy, max_size=10))
    @settings(max_examples=100)
    def test_order_does_not_matter(self, statuses: list[TranscodeStatus]) -> None:
        """**Feature: earntrack-media, Property 3: Video Status Aggregation**

        The aggregate SHALL depend only on the multiset of job statuses.
        """
        assert aggregate_status(statuses) == aggregate_status(list(reversed(statuses)))

    def test_no_jobs(self) -> None:
        assert aggregate_status([]) is None
