class UsageCostError(Exception):
    """
    base class for errors raised by usagecost.
    """


class PersistenceError(UsageCostError):
    """
    raised when the external store rejects a save or clear.
    """


class ScheduleValidationError(UsageCostError):
    def __init__(self, reason: "str") -> "None":
        super().__init__(reason)
        self.reason = reason


class HistoryEditError(UsageCostError):
    def __init__(self, reason: "str") -> "None":
        super().__init__(reason)
        self.reason = reason
