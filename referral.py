import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

REFERRER_CAPACITY = 10  # max outgoing referrals per referrer


class ReferralOutcome(Enum):
    """Result of an add_referral attempt."""
    SUCCESS = "success"
    INVALID_INPUT = "invalid_input"
    SELF_REFERRAL = "self_referral"
    ALREADY_REFERRED = "already_referred"
    CYCLE_DETECTED = "cycle_detected"
    CAPACITY_EXCEEDED = "capacity_exceeded"


_MESSAGES = {
    ReferralOutcome.INVALID_INPUT: "Invalid referrer or candidate!",
    ReferralOutcome.SELF_REFERRAL: "Self-referral is not allowed!",
    ReferralOutcome.ALREADY_REFERRED: "Candidate can only be referred by one user!",
    ReferralOutcome.CYCLE_DETECTED: "Cycle detected! Referral cannot be added.",
    ReferralOutcome.CAPACITY_EXCEEDED: "Referrer has reached the maximum number of referrals!",
}


class ReferralError(ValueError):
    def __init__(self, outcome: ReferralOutcome, message: str):
        super().__init__(message)
        self.outcome = outcome


@dataclass(frozen=True)
class ReferralResult:
    outcome: ReferralOutcome
    referrer: Optional[str]
    candidate: Optional[str]
    message: str

    @property
    def ok(self) -> bool:
        return self.outcome is ReferralOutcome.SUCCESS

    def raise_for_error(self) -> None:
        """Raise ReferralError if the referral was rejected."""
        if not self.ok:
            raise ReferralError(self.outcome, self.message)


@dataclass
class Node:
    key: str
    referrals: list[str] = field(default_factory=list)  # insertion order matters
    referrer: Optional[str] = None  # key only, the network owns every node


@dataclass(frozen=True)
class ReferralCount:
    direct: int = 0
    indirect: int = 0
    total: int = 0


@dataclass(frozen=True)
class RankedReferrer:
    user: str
    score: int
    details: ReferralCount


class ReferralNetwork:
    """
    A directed forest where edges represent referrer → candidate relationships.

    Invariants:
    - No self-referrals
    - Each candidate has at most one referrer
    - Acyclic (no cycles allowed)
    - A referrer has at most `max_referrals` candidates

    Full downstream sets are cached per user and the whole cache is dropped
    on every accepted referral.
    """

    def __init__(self, max_referrals: int = REFERRER_CAPACITY):
        if max_referrals < 0:
            raise ValueError("max_referrals must be non-negative")
        self.max_referrals = max_referrals
        self._nodes: dict[str, Node] = {}  # dicts keep insertion order, used for tie-breaks
        self._reach_cache: dict[str, list[str]] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, user: object) -> bool:
        return user in self._nodes

    def has_user(self, user: str) -> bool:
        return user in self._nodes

    def add_user(self, user: str) -> None:
        """Insert an empty node. No-op if the user already exists."""
        if user not in self._nodes:
            self._nodes[user] = Node(user)

    @staticmethod
    def _is_valid_key(user: object) -> bool:
        return isinstance(user, str) and user != ""

    def _creates_cycle(self, referrer: str, candidate: str) -> bool:
        """
        True if referrer is reachable from candidate, i.e. candidate is an ancestor
        of referrer and the new edge would close a loop.
        """
        visited: set[str] = set()
        stack = [candidate]
        while stack:
            node = stack.pop()
            if node == referrer:
                return True
            if node in visited:
                continue
            visited.add(node)
            stack.extend(self._nodes[node].referrals)
        return False

    def _check_constraints(
        self, referrer: Optional[str], candidate: Optional[str]
    ) -> Optional[ReferralOutcome]:
        if not (self._is_valid_key(referrer) and self._is_valid_key(candidate)):
            return ReferralOutcome.INVALID_INPUT
        if referrer == candidate:
            return ReferralOutcome.SELF_REFERRAL
        if self._nodes[candidate].referrer is not None:
            return ReferralOutcome.ALREADY_REFERRED
        if self._creates_cycle(referrer, candidate):
            return ReferralOutcome.CYCLE_DETECTED
        if len(self._nodes[referrer].referrals) >= self.max_referrals:
            return ReferralOutcome.CAPACITY_EXCEEDED
        return None

    def add_referral(self, referrer: str, candidate: str) -> ReferralResult:
        """
        Add edge referrer → candidate.

        Both users are created on first mention. Rejections are reported through
        the returned ReferralResult and leave the edges untouched; call
        `raise_for_error()` on the result to turn them into a ReferralError.
        """
        if self._is_valid_key(referrer):
            self.add_user(referrer)
        if self._is_valid_key(candidate):
            self.add_user(candidate)

        outcome = self._check_constraints(referrer, candidate)
        if outcome is not None:
            logger.debug("Rejected referral %r -> %r: %s", referrer, candidate, outcome.value)
            return ReferralResult(outcome, referrer, candidate, _MESSAGES[outcome])

        self._nodes[referrer].referrals.append(candidate)
        self._nodes[candidate].referrer = referrer
        self.invalidate_reach_cache()
        logger.debug("Added referral %r -> %r", referrer, candidate)
        return ReferralResult(
            ReferralOutcome.SUCCESS, referrer, candidate, f"{candidate} referred by {referrer}"
        )

    def get_referrals(self, user: str) -> list[str]:
        """Direct referrals in insertion order, empty for unknown users."""
        node = self._nodes.get(user)
        if node is None:
            return []
        return list(node.referrals)

    def get_referrer(self, user: str) -> Optional[str]:
        node = self._nodes.get(user)
        return node.referrer if node else None

    def all_ancestors(self, user: str) -> list[str]:
        """Walk up through referrers, nearest first."""
        result = []
        seen = {user}
        current = self.get_referrer(user)
        while current is not None and current not in seen:
            result.append(current)
            seen.add(current)
            current = self.get_referrer(current)
        return result

    def get_all_nodes(self) -> list[str]:
        """All users in insertion order."""
        return list(self._nodes)

    def invalidate_reach_cache(self) -> None:
        if self._reach_cache:
            logger.debug("Dropping %d cached reach sets", len(self._reach_cache))
        self._reach_cache.clear()

    def full_reach(self, user: str) -> list[str]:
        """BFS over outgoing edges. Returns every strict descendant once, in visit order."""
        if user not in self._nodes:
            return []
        cached = self._reach_cache.get(user)
        if cached is None:
            cached = []
            visited = {user}
            queue = deque(self._nodes[user].referrals)
            visited.update(queue)
            while queue:
                node = queue.popleft()
                cached.append(node)
                for child in self._nodes[node].referrals:
                    if child not in visited:
                        visited.add(child)
                        queue.append(child)
            self._reach_cache[user] = cached
        return list(cached)  # callers must not mutate the cache


# =============================================================================
# Reach metrics (pure functions - do not mutate network)
# =============================================================================

def compute_full_reach(network: ReferralNetwork, user: str) -> list[str]:
    """All users downstream of `user`, direct or indirect."""
    return network.full_reach(user)


def total_referral_count(network: ReferralNetwork, user: str) -> ReferralCount:
    """Direct referrals, indirect referrals beyond them, and their sum."""
    if not network.has_user(user):
        return ReferralCount()
    direct = len(network.get_referrals(user))
    indirect = len(network.full_reach(user)) - direct
    return ReferralCount(direct=direct, indirect=indirect, total=direct + indirect)


def calculate_reach_score(network: ReferralNetwork, user: str) -> int:
    """Direct referrals weigh twice as much as indirect ones."""
    count = total_referral_count(network, user)
    return 2 * count.direct + count.indirect


def unique_reach_expansion(network: ReferralNetwork, k: int) -> list[str]:
    """
    Greedy maximum coverage: pick up to k users whose combined downstream sets
    cover as many distinct users as possible.

    Each round takes the user adding the most not-yet-covered descendants, first
    in insertion order on ties. Stops early once nobody adds anything new.
    """
    if k < 0:
        raise ValueError("k must be non-negative")
    covered: set[str] = set()
    selected: list[str] = []
    users = network.get_all_nodes()
    for _ in range(k):
        best_user, best_gain = None, 0
        for user in users:
            gain = len(set(network.full_reach(user)) - covered)
            if gain > best_gain:
                best_user, best_gain = user, gain
        if best_user is None:
            break
        selected.append(best_user)
        covered.update(network.full_reach(best_user))
    return selected


def top_referrers_by_reach(network: ReferralNetwork, k: int) -> list[RankedReferrer]:
    """Top k users by reach score, highest first. Ties keep insertion order."""
    if k < 0:
        raise ValueError("k must be non-negative")
    ranked = [
        RankedReferrer(user, calculate_reach_score(network, user), total_referral_count(network, user))
        for user in network.get_all_nodes()
    ]
    ranked.sort(key=lambda r: r.score, reverse=True)  # stable
    return ranked[:k]


# =============================================================================
# Flow centrality
# =============================================================================

def _shortest_distances(network: ReferralNetwork) -> dict[str, dict[str, int]]:
    """Unweighted BFS distances from every user. Missing entries mean unreachable."""
    distances = {}
    for source in network.get_all_nodes():
        dist = {source: 0}
        queue = deque([source])
        while queue:
            node = queue.popleft()
            for child in network.get_referrals(node):
                if child not in dist:
                    dist[child] = dist[node] + 1
                    queue.append(child)
        distances[source] = dist
    return distances


def flow_centrality_scores(network: ReferralNetwork) -> dict[str, int]:
    """
    For every user v, the number of ordered pairs (s, t) of other users where v
    lies on a shortest directed path from s to t:
        dist(s, t) == dist(s, v) + dist(v, t)
    Pairs with no path contribute nothing.
    """
    distances = _shortest_distances(network)
    scores = {user: 0 for user in distances}
    for s, from_s in distances.items():
        # only t and v reachable from s can satisfy the equality
        for t, d_st in from_s.items():
            if t == s:
                continue
            for v, d_sv in from_s.items():
                if v == s or v == t:
                    continue
                d_vt = distances[v].get(t)
                if d_vt is not None and d_sv + d_vt == d_st:
                    scores[v] += 1
    return scores


def flow_centrality(network: ReferralNetwork) -> list[str]:
    """All users ranked by flow centrality, highest first. Ties keep insertion order."""
    scores = flow_centrality_scores(network)
    return sorted(scores, key=lambda u: scores[u], reverse=True)
