"""Validation and normalization helpers for identifiers crossing the API boundary.

Wallet addresses are case-normalized to lowercase everywhere they are stored
or compared.
"""
from typing import Any
import regex as re


VALID_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

# match_<base36 millis>_<base36 random>
VALID_MATCH_ID_RE = re.compile(r"^match_[0-9a-z]{6,12}_[0-9a-z]{10}$")

VALID_MOVES = ("rock", "paper", "scissors")


def is_valid_address(s: Any) -> bool:
	"""Return True if `s` looks like an EVM wallet address (0x + 40 hex chars)."""
	if not isinstance(s, str):
		return False
	return bool(VALID_ADDRESS_RE.match(s.strip()))


def normalize_address(s: str) -> str:
	"""Strip and lowercase a wallet address. Does not validate."""
	return s.strip().lower()


def is_valid_match_id(s: Any) -> bool:
	if not isinstance(s, str):
		return False
	return bool(VALID_MATCH_ID_RE.match(s))


def is_valid_move(s: Any) -> bool:
	return isinstance(s, str) and s in VALID_MOVES
