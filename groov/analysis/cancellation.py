"""Cooperative cancellation by integer analysis token."""


class AnalysisCanceled(Exception):
    """Raised at a checkpoint when the running analysis' token was canceled."""

    def __init__(self, token: int):
        super().__init__(f"analysis {token} canceled")
        self.token = token


class CanceledTokens:
    """Set of canceled analysis tokens, shared by all running analyses.

    Writers add tokens; analyses only poll ``is_canceled`` at checkpoints.
    A token is discarded again when a new analysis is started with it.
    """

    def __init__(self):
        self._tokens: set[int] = set()

    def cancel(self, token: int) -> None:
        self._tokens.add(token)

    def is_canceled(self, token: int) -> bool:
        return token in self._tokens

    def discard(self, token: int) -> None:
        self._tokens.discard(token)

    def clear(self) -> None:
        self._tokens.clear()

    def __contains__(self, token: int) -> bool:
        return self.is_canceled(token)

    def __len__(self) -> int:
        return len(self._tokens)


canceled_tokens = CanceledTokens()


def throw_if_canceled(token: int, is_canceled) -> None:
    """Raise AnalysisCanceled if *is_canceled(token)* is true."""
    if is_canceled(token):
        raise AnalysisCanceled(token)
