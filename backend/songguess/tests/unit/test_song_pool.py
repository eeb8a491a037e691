import random
from collections import Counter

import pytest

from songguess.logic.song_pool import (
    MAX_CONSECUTIVE_OWNER,
    build_song_pool,
    claim_tracks,
    contribution_targets,
    spread_owners,
)
from songguess.logic.state import RoundSong
from songguess.tests.conftest import make_player, make_track


def _owners(pool: list[RoundSong]) -> list[str]:
    return [song.owner_id for song in pool]


def _longest_run(owners: list[str]) -> int:
    longest = current = 0
    previous = None
    for owner in owners:
        current = current + 1 if owner == previous else 1
        previous = owner
        longest = max(longest, current)
    return longest


def _pool_of(owner_sequence: str) -> list[RoundSong]:
    return [
        RoundSong(track=make_track(f"{owner}{index}"), owner_id=owner, owner_name=owner)
        for index, owner in enumerate(owner_sequence)
    ]


class TestClaimTracks:
    def test_higher_preference_wins_shared_track(self):
        alice = make_player("a", ["x", "y", "z"])
        bob = make_player("b", ["y", "w"])

        claimed = claim_tracks([alice, bob])

        assert [s.track.id for s in claimed["a"]] == ["x", "z"]
        assert [s.track.id for s in claimed["b"]] == ["y", "w"]

    def test_same_rank_tie_goes_to_earlier_roster_position(self):
        alice = make_player("a", ["shared", "a1"])
        bob = make_player("b", ["shared", "b1"])

        claimed = claim_tracks([alice, bob])

        assert [s.track.id for s in claimed["a"]] == ["shared", "a1"]
        assert [s.track.id for s in claimed["b"]] == ["b1"]

    def test_claimed_song_carries_owner_name(self):
        claimed = claim_tracks([make_player("a", ["x"], name="Alice")])

        assert claimed["a"][0].owner_name == "Alice"


class TestContributionTargets:
    def test_even_split(self):
        assert contribution_targets(["a", "b"], 10) == {"a": 5, "b": 5}

    def test_remainder_goes_to_first_contributors(self):
        assert contribution_targets(["a", "b", "c"], 10) == {"a": 4, "b": 3, "c": 3}

    def test_no_contributors(self):
        assert contribution_targets([], 10) == {}


class TestBuildSongPool:
    def test_shared_track_scenario(self):
        alice = make_player("a", ["x", "y", "z"])
        bob = make_player("b", ["y", "w"])

        pool = build_song_pool([alice, bob], 3, random.Random(3))

        assert len(pool) == 3
        counts = Counter(_owners(pool))
        assert sorted(counts.values()) == [1, 2]
        for song in pool:
            if song.track.id == "y":
                assert song.owner_id == "b"

    @pytest.mark.parametrize("seed", range(10))
    def test_size_is_min_of_requested_and_unique_tracks(self, seed):
        rng = random.Random(seed)
        players = [
            make_player(pid, [f"t{rng.randrange(30)}" for _ in range(rng.randrange(1, 12))])
            for pid in ("a", "b", "c")
        ]
        unique = {t.id for p in players for t in p.ranked_tracks}
        requested = rng.choice([5, 10, 25])

        pool = build_song_pool(players, requested, rng)

        assert len(pool) == min(requested, len(unique))
        assert {s.owner_id for s in pool} <= {"a", "b", "c"}

    @pytest.mark.parametrize("seed", range(10))
    def test_every_track_appears_once(self, seed):
        rng = random.Random(seed)
        players = [make_player(pid, [f"t{rng.randrange(15)}" for _ in range(8)]) for pid in ("a", "b", "c", "d")]

        pool = build_song_pool(players, 25, rng)

        track_ids = [s.track.id for s in pool]
        assert len(track_ids) == len(set(track_ids))

    def test_contributions_differ_by_at_most_one(self):
        players = [make_player(pid, [f"{pid}{i}" for i in range(10)]) for pid in ("a", "b", "c")]

        pool = build_song_pool(players, 10, random.Random(0))

        assert Counter(_owners(pool)) == {"a": 4, "b": 3, "c": 3}

    def test_shortfall_is_backfilled_by_others(self):
        short = make_player("a", ["a0"])
        b = make_player("b", [f"b{i}" for i in range(10)])
        c = make_player("c", [f"c{i}" for i in range(10)])

        pool = build_song_pool([short, b, c], 9, random.Random(0))

        assert Counter(_owners(pool)) == {"a": 1, "b": 4, "c": 4}

    def test_player_without_tracks_does_not_shrink_shares(self):
        empty = make_player("a")
        b = make_player("b", [f"b{i}" for i in range(10)])
        c = make_player("c", [f"c{i}" for i in range(10)])

        pool = build_song_pool([empty, b, c], 10, random.Random(0))

        assert Counter(_owners(pool)) == {"b": 5, "c": 5}

    def test_empty_when_nobody_has_tracks(self):
        assert build_song_pool([make_player("a"), make_player("b")], 10) == []

    def test_empty_for_no_players(self):
        assert build_song_pool([], 10) == []

    def test_same_seed_gives_same_pool(self):
        players = [make_player(pid, [f"{pid}{i}" for i in range(6)]) for pid in ("a", "b", "c")]

        first = build_song_pool(players, 10, random.Random(42))
        second = build_song_pool(players, 10, random.Random(42))

        assert [s.track.id for s in first] == [s.track.id for s in second]

    @pytest.mark.parametrize("seed", range(20))
    def test_no_owner_streaks_with_three_owners(self, seed):
        players = [make_player(pid, [f"{pid}{i}" for i in range(10)]) for pid in ("a", "b", "c")]

        pool = build_song_pool(players, 10, random.Random(seed))

        assert _longest_run(_owners(pool)) <= MAX_CONSECUTIVE_OWNER

    @pytest.mark.parametrize("seed", range(10))
    def test_no_owner_streaks_with_four_owners(self, seed):
        players = [make_player(pid, [f"{pid}{i}" for i in range(10)]) for pid in ("a", "b", "c", "d")]

        pool = build_song_pool(players, 25, random.Random(seed))

        assert _longest_run(_owners(pool)) <= MAX_CONSECUTIVE_OWNER

    @pytest.mark.parametrize("seed", range(50))
    def test_no_owner_streaks_with_uneven_libraries(self, seed):
        # 10/1/2 tracks: backfill leaves one owner with 7 of the 10 songs.
        players = [
            make_player("a", [f"a{i}" for i in range(10)]),
            make_player("b", ["b0"]),
            make_player("c", ["c0", "c1"]),
        ]

        pool = build_song_pool(players, 10, random.Random(seed))

        assert Counter(_owners(pool)) == {"a": 7, "b": 1, "c": 2}
        assert _longest_run(_owners(pool)) <= MAX_CONSECUTIVE_OWNER


class TestSpreadOwners:
    def test_breaks_up_leading_run(self):
        result = spread_owners(_pool_of("AAAABBBBCC"))

        assert _longest_run(_owners(result)) <= MAX_CONSECUTIVE_OWNER
        assert Counter(_owners(result)) == {"A": 4, "B": 4, "C": 2}

    @pytest.mark.parametrize("sequence", ["BCAAA", "BAAAA", "CAABAAA", "BCAAAAAA", "AAAAAABCBC"])
    def test_fixes_runs_at_the_tail(self, sequence):
        result = spread_owners(_pool_of(sequence))

        assert _longest_run(_owners(result)) <= MAX_CONSECUTIVE_OWNER
        assert Counter(_owners(result)) == Counter(sequence)

    @pytest.mark.parametrize("seed", range(200))
    def test_random_arrangeable_pools_have_no_runs(self, seed):
        rng = random.Random(seed)
        sequence = "".join(rng.choice("AAAABBC") for _ in range(rng.randint(3, 12)))
        top = max(Counter(sequence).values())
        arrangeable = top <= MAX_CONSECUTIVE_OWNER * (len(sequence) - top + 1)

        result = spread_owners(_pool_of(sequence))

        if arrangeable:
            assert _longest_run(_owners(result)) <= MAX_CONSECUTIVE_OWNER
        assert sorted(s.track.id for s in result) == sorted(s.track.id for s in _pool_of(sequence))

    def test_impossible_mix_keeps_every_song(self):
        result = spread_owners(_pool_of("AAAAAAB"))

        assert Counter(_owners(result)) == {"A": 6, "B": 1}
        assert _owners(result)[:3] == ["A", "A", "B"]

    def test_leaves_valid_pool_untouched(self):
        pool = _pool_of("AABBCA")

        assert spread_owners(pool) == pool

    def test_single_owner_is_left_as_is(self):
        pool = _pool_of("AAAA")

        assert _owners(spread_owners(pool)) == ["A", "A", "A", "A"]

    def test_does_not_mutate_input(self):
        pool = _pool_of("AAAB")
        before = list(pool)

        spread_owners(pool)

        assert pool == before
