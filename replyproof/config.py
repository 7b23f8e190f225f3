"""
Settings from environment (and .env, if present).

Everything is read once by Settings.from_env(); components receive the
Settings object instead of calling os.getenv themselves.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# EAS on Sepolia
EAS_SEPOLIA = "0xC2679fBD37d54388Ce493F1DB75320D236e1815e"
SEPOLIA_RPC = "https://ethereum-sepolia-rpc.publicnode.com"
SEPOLIA_CHAIN_ID = 11155111
ZERO_SCHEMA_UID = "0x" + "0" * 64

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def load_env_file(path: Optional[Path] = None) -> None:
    """Load .env from cwd (or path) without overriding variables already set."""
    if path is not None:
        load_dotenv(path, override=False)
        return
    env_file = Path.cwd() / ".env"
    if env_file.exists():
        load_dotenv(env_file, override=False)


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or "").strip() or default


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    return int(raw) if raw.isdigit() else default


class Settings(BaseModel):
    port: int = 5000
    public_url: str = "http://localhost:5000"
    database_url: str = "sqlite:///replyproof.db"

    # Social API (Neynar)
    neynar_api_key: str = ""
    neynar_api_url: str = "https://api.neynar.com"

    # Vision model (OpenAI-compatible)
    vision_api_key: str = ""
    vision_url: str = "https://api.openai.com/v1"
    vision_model: str = "gpt-4o-mini"

    # Chain
    rpc_url: str = SEPOLIA_RPC
    chain_id: int = SEPOLIA_CHAIN_ID
    eas_address: str = EAS_SEPOLIA
    eas_schema_uid: str = ZERO_SCHEMA_UID
    attester_private_key: str = ""
    reward_token: str = ""
    reward_amount: float = 1.0
    payment_recipient: str = ""
    payment_wei: int = 100_000_000_000_000
    explorer_url: str = "https://sepolia.etherscan.io"

    # Pipeline
    embed_filter: Literal["regex", "any"] = "regex"
    label: str = "replyproof"
    workers: int = Field(4, ge=1)

    # Timeouts (seconds)
    http_timeout: float = 10.0
    vision_timeout: float = 60.0
    rpc_timeout: float = 30.0
    receipt_timeout: float = 120.0

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        load_env_file(env_file)
        embed_filter = _env("REPLYPROOF_EMBED_FILTER", "regex").lower()
        return cls(
            port=_env_int("PORT", 5000),
            public_url=_env("REPLYPROOF_PUBLIC_URL", "http://localhost:5000").rstrip("/"),
            database_url=_env("REPLYPROOF_DATABASE_URL", "sqlite:///replyproof.db"),
            neynar_api_key=_env("NEYNAR_API_KEY"),
            neynar_api_url=_env("NEYNAR_API_URL", "https://api.neynar.com").rstrip("/"),
            vision_api_key=_env("REPLYPROOF_VISION_API_KEY") or _env("OPENAI_API_KEY"),
            vision_url=_env("REPLYPROOF_VISION_URL", "https://api.openai.com/v1").rstrip("/"),
            vision_model=_env("REPLYPROOF_VISION_MODEL", "gpt-4o-mini"),
            rpc_url=_env("SEPOLIA_RPC", SEPOLIA_RPC),
            chain_id=_env_int("REPLYPROOF_CHAIN_ID", SEPOLIA_CHAIN_ID),
            eas_address=_env("REPLYPROOF_EAS_ADDRESS", EAS_SEPOLIA),
            eas_schema_uid=_env("REPLYPROOF_EAS_SCHEMA_UID", ZERO_SCHEMA_UID),
            attester_private_key=_env("REPLYPROOF_ATTESTER_PRIVATE_KEY"),
            reward_token=_env("REPLYPROOF_REWARD_TOKEN"),
            reward_amount=_env_float("REPLYPROOF_REWARD_AMOUNT", 1.0),
            payment_recipient=_env("REPLYPROOF_PAYMENT_RECIPIENT"),
            payment_wei=_env_int("REPLYPROOF_PAYMENT_WEI", 100_000_000_000_000),
            explorer_url=_env("REPLYPROOF_EXPLORER_URL", "https://sepolia.etherscan.io").rstrip("/"),
            embed_filter=embed_filter if embed_filter in ("regex", "any") else "regex",
            label=_env("REPLYPROOF_LABEL", "replyproof"),
            workers=max(1, _env_int("REPLYPROOF_WORKERS", 4)),
            http_timeout=_env_float("REPLYPROOF_HTTP_TIMEOUT", 10.0),
            vision_timeout=_env_float("REPLYPROOF_VISION_TIMEOUT", 60.0),
            rpc_timeout=_env_float("REPLYPROOF_RPC_TIMEOUT", 30.0),
            receipt_timeout=_env_float("REPLYPROOF_RECEIPT_TIMEOUT", 120.0),
            log_level=_env("REPLYPROOF_LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """One stream handler on the root logger; safe to call twice."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not any(getattr(h, "_replyproof", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._replyproof = True
        root.addHandler(handler)
