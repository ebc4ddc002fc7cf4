from __future__ import annotations

import pytest

from bluffbrain.core.codec import StateActionKey, discretize, fingerprint, state_features
from bluffbrain.core.errors import ValidationError
from bluffbrain.core.models import (
    ActionKind,
    ActionTemplate,
    Card,
    Challenge,
    GameState,
    LastPlay,
    Pass,
    PlayCards,
    action_from_dict,
    is_upper_half,
    rank_index,
    validate_action,
)


def _card(rank: str, suit: str = "hearts") -> Card:
    return Card(suit=suit, rank=rank, id=f"{rank}-{suit}")


def _state(**overrides) -> GameState:
    base = dict(
        player_hand=(_card("3"), _card("K", "spades")),
        ai_hand=(_card("7"), _card("7", "clubs"), _card("Q", "diamonds")),
        center_pile=(_card("2", "clubs"),),
        current_turn="ai",
        last_play=None,
    )
    base.update(overrides)
    return GameState(**base)


def test_rank_order_and_upper_half() -> None:
    assert rank_index("2") == 0
    assert rank_index("A") == 12
    assert not is_upper_half("8")
    assert is_upper_half("9")
    assert is_upper_half("A")
    with pytest.raises(ValidationError):
        rank_index("1")


def test_card_rejects_unknown_suit_and_rank() -> None:
    with pytest.raises(ValidationError):
        Card(suit="stars", rank="2", id="x")
    with pytest.raises(ValidationError):
        Card(suit="hearts", rank="11", id="x")


def test_game_state_from_camel_case_payload() -> None:
    state = GameState.from_dict(
        {
            "playerHand": [{"suit": "hearts", "value": "T", "id": "p1"}],
            "aiHand": [{"suit": "spades", "rank": "A", "id": "a1"}],
            "centerPile": [],
            "currentTurn": "AI",
            "lastPlay": {
                "player": "player",
                "declaredRank": "10",
                "actualCards": [{"suit": "clubs", "rank": "4", "id": "c4"}],
            },
        }
    )
    assert state.player_hand[0].rank == "10"
    assert state.current_turn == "ai"
    assert state.opponent_played_last
    assert state.last_play is not None and state.last_play.is_bluff
    assert GameState.from_dict(state.to_dict()) == state


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {"playerHand": "nope", "aiHand": [], "centerPile": []},
        {"playerHand": [], "aiHand": [{"suit": "hearts", "rank": "Z"}], "centerPile": []},
        {"playerHand": [], "aiHand": [], "centerPile": [], "currentTurn": "dealer"},
        {"playerHand": [], "aiHand": [], "centerPile": [], "lastPlay": {"actor": "ghost", "declaredRank": "2"}},
    ],
)
def test_game_state_rejects_malformed_payloads(payload) -> None:
    with pytest.raises(ValidationError):
        GameState.from_dict(payload)


def test_action_parsing_and_validation() -> None:
    play = action_from_dict(
        {"type": "play_cards", "payload": {"cards": [{"suit": "hearts", "rank": "5", "id": "h5"}], "declaredValue": "6"}}
    )
    assert isinstance(play, PlayCards)
    assert play.is_bluff
    assert play.to_dict()["declaredRank"] == "6"
    assert isinstance(action_from_dict({"type": "CHALLENGE"}), Challenge)
    assert isinstance(action_from_dict({"type": "pass"}), Pass)

    with pytest.raises(ValidationError):
        action_from_dict({"type": "FOLD"})
    with pytest.raises(ValidationError):
        validate_action(PlayCards(cards=(), declared_rank="2"))
    with pytest.raises(ValidationError):
        validate_action(PlayCards(cards=(_card("2"),), declared_rank="1"))
    with pytest.raises(ValidationError):
        validate_action("PASS")


def test_action_template_of_play() -> None:
    template = ActionTemplate.of(PlayCards(cards=(_card("7"), _card("7", "clubs")), declared_rank="7"))
    assert template == ActionTemplate(ActionKind.PLAY_CARDS, 2, "7")
    assert ActionTemplate.of(Challenge()).card_count is None


def test_discretize_key_serialises_with_fixed_field_order() -> None:
    state = _state(
        last_play=LastPlay(actor="player", declared_rank="9", actual_cards=(_card("9", "clubs"), _card("4")))
    )
    key = discretize(state, ActionTemplate(ActionKind.PLAY_CARDS, 2, "J"))
    assert key.serialize() == '[3,2,1,"9",2,"PLAY_CARDS",2,"J"]'
    assert StateActionKey.parse(key.serialize()) == key
    assert key.state == state_features(state)

    with pytest.raises(ValueError):
        StateActionKey.parse('[3,2,1,"9",2,"FOLD",null,null]')
    with pytest.raises(ValueError):
        StateActionKey.parse("[1,2]")


def test_fingerprint_ignores_card_order_within_a_zone() -> None:
    state = _state()
    shuffled = _state(ai_hand=tuple(reversed(state.ai_hand)))
    assert fingerprint(state) == fingerprint(shuffled)


def test_fingerprint_changes_with_any_decision_relevant_field() -> None:
    state = _state()
    variants = [
        _state(ai_hand=state.ai_hand[:-1]),
        _state(player_hand=state.player_hand + (_card("5"),)),
        _state(center_pile=()),
        _state(current_turn="player"),
        _state(last_play=LastPlay(actor="player", declared_rank="4", actual_cards=(_card("4"),))),
        _state(ai_hand=(_card("7"), _card("7", "clubs"), _card("Q", "hearts"))),
    ]
    prints = {fingerprint(v) for v in variants}
    assert fingerprint(state) not in prints
    assert len(prints) == len(variants)
