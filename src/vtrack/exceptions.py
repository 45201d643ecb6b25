"""Exceptions raised by the tracking and calibration front-end."""


class VTrackError(Exception):
    """Base class for vtrack errors."""


class MatchIndexError(VTrackError, IndexError):
    """A descriptor match references a keypoint that does not exist.

    This is a data-integrity defect in the matching stage. It fails the
    current frame's filtering step only; the caller is expected to log it
    and continue with the next frame.
    """

    def __init__(self, match_index: int, query_idx: int, train_idx: int,
                 num_query: int, num_train: int) -> None:
        self.match_index = match_index
        self.query_idx = query_idx
        self.train_idx = train_idx
        self.num_query = num_query
        self.num_train = num_train
        super().__init__(
            f"Match {match_index} references keypoints ({query_idx}, {train_idx}) "
            f"but only ({num_query}, {num_train}) keypoints exist"
        )
