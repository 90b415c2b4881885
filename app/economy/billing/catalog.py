from __future__ import annotations

from dataclasses import dataclass

TOKENS_PER_GBP = 250


@dataclass(frozen=True, slots=True)
class TokenPackSpec:
    pack_code: str
    title: str
    tokens: int
    price_minor: int


@dataclass(frozen=True, slots=True)
class MessagePackSpec:
    messages: int
    cost_tokens: int
    label: str


TOKEN_PACKS: dict[str, TokenPackSpec] = {
    "TOKENS_1250": TokenPackSpec(
        pack_code="TOKENS_1250",
        title="1,250 tokens",
        tokens=1250,
        price_minor=500,
    ),
    "TOKENS_2500": TokenPackSpec(
        pack_code="TOKENS_2500",
        title="2,500 tokens",
        tokens=2500,
        price_minor=1000,
    ),
    "TOKENS_6250": TokenPackSpec(
        pack_code="TOKENS_6250",
        title="6,250 tokens",
        tokens=6250,
        price_minor=2500,
    ),
}

# Ordered smallest first.
MESSAGE_PACKS: tuple[MessagePackSpec, ...] = (
    MessagePackSpec(messages=10, cost_tokens=500, label="10 messages"),
    MessagePackSpec(messages=25, cost_tokens=1000, label="25 messages"),
    MessagePackSpec(messages=50, cost_tokens=1750, label="50 messages"),
)


def get_token_pack(pack_code: str) -> TokenPackSpec | None:
    return TOKEN_PACKS.get(pack_code)


def get_message_pack(messages: int) -> MessagePackSpec | None:
    for pack in MESSAGE_PACKS:
        if pack.messages == messages:
            return pack
    return None
