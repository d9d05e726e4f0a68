class HabitGridError(Exception):
    pass


class InvalidRangeError(HabitGridError):
    def __init__(self, start: object, end: object, reason: str = "end precedes start"):
        self.start = start
        self.end = end
        super().__init__(f"invalid range {start}..{end}: {reason}")


class StorageUnavailableError(HabitGridError):
    pass


class NotFoundError(HabitGridError):
    pass


class ValidationError(HabitGridError):
    pass


class AmbiguousError(ValidationError):
    def __init__(self, ref: str, count: int = 0, sample: list[str] | None = None):
        self.ref = ref
        self.count = count
        self.sample = sample or []
        count_note = f" ({count})" if count else ""
        note = f": {', '.join(self.sample)}" if self.sample else ""
        super().__init__(f"ambiguous ref '{ref}' matches multiple habits{count_note}{note}")
