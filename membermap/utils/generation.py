from itertools import count


class RequestGeneration:
    """
    Monotonic request token. Take a token before starting async work and
    apply the result only if ``is_current(token)`` still holds; any newer
    request makes older tokens stale.
    """

    def __init__(self):
        self._counter = count(1)
        self.current = 0

    def next(self) -> int:
        self.current = next(self._counter)
        return self.current

    def is_current(self, token: int) -> bool:
        return token == self.current

    def invalidate(self) -> None:
        """Make every outstanding token stale."""
        self.next()
