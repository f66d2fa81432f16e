# ============================================
#   roomchat — Poll Engine
#   At most one two-option poll, one vote per connection
# ============================================

from roomchat.errors import Rejection


class PollError(Exception):
    """Raised for invalid poll transitions; carries the Rejection reason."""

    def __init__(self, reason: Rejection):
        super().__init__(reason.value)
        self.reason = reason


class PollEngine:
    """
    NO_POLL -> ACTIVE{options, votes} -> NO_POLL

    votes maps a connection id to 0 or 1 (the option index).
    Voting again overwrites the previous vote.
    """

    def __init__(self):
        self.options = None
        self.votes = {}

    @property
    def active(self) -> bool:
        return self.options is not None

    def start(self, option1: str, option2: str):
        if self.active:
            raise PollError(Rejection.POLL_ALREADY_ACTIVE)

        self.options = [option1, option2]
        self.votes = {}

    def vote(self, sid, choice) -> list:
        if not self.active:
            raise PollError(Rejection.NO_POLL_ACTIVE)
        if choice not in (1, 2):
            raise PollError(Rejection.INVALID_VOTE)

        self.votes[sid] = choice - 1
        return self.tally()

    def end(self) -> list:
        if not self.active:
            raise PollError(Rejection.NO_POLL_ACTIVE)

        counts = self.tally()
        self.options = None
        self.votes = {}
        return counts

    def tally(self) -> list:
        counts = [0, 0]
        for v in self.votes.values():
            counts[v] += 1
        return counts

    def snapshot(self):
        if not self.active:
            return None
        return {"options": list(self.options), "votes": dict(self.votes)}
