"""Domain errors raised by the distribution engine."""


class DistributionError(Exception):
    """Base class for distribution engine errors."""


class GroupNotFoundError(DistributionError):
    def __init__(self, group_id: str):
        super().__init__(f"Group {group_id} not found")
        self.group_id = group_id


class PreviewNotFoundError(DistributionError):
    def __init__(self, preview_id: str):
        super().__init__(f"Preview {preview_id} not found")
        self.preview_id = preview_id


class ApplyStateError(DistributionError):
    """Apply requested on a preview that is not Completed or was already applied."""


class AllocationError(DistributionError):
    """An allocation strategy could not produce a usable result.

    Always recovered by falling back to the greedy balancer.
    """
