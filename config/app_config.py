"""Application configuration for arxiv-trends.

Configuration is built once at process start by load_config() and passed
explicitly into the fetcher, classifier, store and sender. Values come from
built-in defaults, an optional YAML file, and environment variables, in
increasing order of precedence.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_ARXIV_API_URL = "http://export.arxiv.org/api/query"
DEFAULT_ARXIV_CATEGORIES = ["cs.LG", "stat.ML"]
DEFAULT_LLM_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_LLM_MODEL = "anthropic/claude-3.5-haiku"
DEFAULT_DB_PATH = "data/db/trends.db"

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class ConfigError(ValueError):
    """Raised when a configuration value is present but invalid."""


@dataclass
class ArxivConfig:
    categories: List[str] = field(default_factory=lambda: list(DEFAULT_ARXIV_CATEGORIES))
    max_results: int = 100
    days_back: int = 7
    api_url: str = DEFAULT_ARXIV_API_URL
    timeout: int = 30


@dataclass
class LLMConfig:
    api_key: Optional[str] = None
    model: str = DEFAULT_LLM_MODEL
    base_url: str = DEFAULT_LLM_BASE_URL
    temperature: float = 0.1
    max_tokens: int = 500
    timeout: float = 60.0
    app_url: str = "https://github.com/arxiv-trends/arxiv-trends"
    app_title: str = "ArXiv Trends"


@dataclass
class SmtpConfig:
    host: Optional[str] = None
    port: int = 587
    user: Optional[str] = None
    password: Optional[str] = None
    from_address: Optional[str] = None
    timeout: int = 30

    @property
    def sender_address(self) -> Optional[str]:
        return self.from_address or self.user


@dataclass
class ReportConfig:
    recipients: List[str] = field(default_factory=list)
    send_mode: str = "smtp"  # "smtp" or "demo"
    demo_output_path: str = "data/outputs/latest_email.html"


@dataclass
class StorageConfig:
    database_url: Optional[str] = None
    db_path: str = DEFAULT_DB_PATH

    @property
    def is_postgres(self) -> bool:
        url = self.database_url or ""
        return url.startswith("postgresql://") or url.startswith("postgres://")


@dataclass
class AppConfig:
    arxiv: ArxivConfig = field(default_factory=ArxivConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    classify_workers: int = 1


def sanitize_secret(value: Optional[str]) -> Optional[str]:
    """Clean a secret read from the environment or a config file.

    Strips surrounding whitespace and quotes and removes characters that
    are not printable ASCII (unicode line separators, control characters),
    which break HTTP headers when a key is pasted from a web page.

    Args:
        value: Raw secret value

    Returns:
        Cleaned secret, or None if nothing usable remains
    """
    if value is None:
        return None
    cleaned = value.strip().strip("\"'")
    cleaned = "".join(ch for ch in cleaned if 32 <= ord(ch) <= 126).strip()
    return cleaned or None


def is_valid_email(address: str) -> bool:
    return bool(EMAIL_PATTERN.match(address))


def parse_recipients(raw: Any) -> List[str]:
    """Parse a recipient list from a comma-separated string or a list.

    Empty entries and entries that do not look like an email address are
    dropped with a warning.

    Args:
        raw: "a@x.com, b@y.org" or ["a@x.com", "b@y.org"] or None

    Returns:
        List of valid addresses in input order
    """
    if not raw:
        return []
    items = raw.split(",") if isinstance(raw, str) else list(raw)

    recipients = []
    for item in items:
        address = str(item).strip()
        if not address:
            continue
        if not is_valid_email(address):
            logger.warning("Dropping invalid recipient address: %s", address)
            continue
        recipients.append(address)
    return recipients


def parse_categories(raw: Any) -> List[str]:
    if isinstance(raw, str):
        items = raw.split(",")
    else:
        items = list(raw or [])
    return [str(item).strip() for item in items if str(item).strip()]


def _parse_int(name: str, value: Any, minimum: int = 1, maximum: Optional[int] = None) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {name}: {value}") from None
    if parsed < minimum or (maximum is not None and parsed > maximum):
        raise ConfigError(f"Invalid {name}: {value}")
    return parsed


def _parse_float(name: str, value: Any, minimum: float = 0.0) -> float:
    try:
        parsed = float(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {name}: {value}") from None
    if parsed < minimum:
        raise ConfigError(f"Invalid {name}: {value}")
    return parsed


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    return data


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build the application configuration.

    Args:
        path: Optional path to a YAML config file with arxiv/llm/smtp/report/storage sections
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated AppConfig

    Raises:
        ConfigError: If a value is present but invalid (e.g. SMTP_PORT=70000)
    """
    env = os.environ if environ is None else environ
    data = _load_yaml(Path(path)) if path else {}

    arxiv_section = data.get("arxiv") or {}
    llm_section = data.get("llm") or {}
    smtp_section = data.get("smtp") or {}
    report_section = data.get("report") or {}
    storage_section = data.get("storage") or {}

    def pick(env_name: str, section: Dict[str, Any], key: str, default: Any = None) -> Any:
        value = env.get(env_name)
        if value is not None and str(value).strip() != "":
            return value
        return section.get(key, default)

    arxiv = ArxivConfig(
        categories=parse_categories(pick("ARXIV_CATEGORIES", arxiv_section, "categories", DEFAULT_ARXIV_CATEGORIES)),
        max_results=_parse_int("ARXIV_MAX_RESULTS", pick("ARXIV_MAX_RESULTS", arxiv_section, "max_results", 100)),
        days_back=_parse_int("ARXIV_DAYS_BACK", pick("ARXIV_DAYS_BACK", arxiv_section, "days_back", 7)),
        api_url=pick("ARXIV_API_URL", arxiv_section, "api_url", DEFAULT_ARXIV_API_URL),
        timeout=_parse_int("ARXIV_TIMEOUT", arxiv_section.get("timeout", 30)),
    )
    if not arxiv.categories:
        arxiv.categories = list(DEFAULT_ARXIV_CATEGORIES)

    llm = LLMConfig(
        api_key=sanitize_secret(pick("OPENROUTER_API_KEY", llm_section, "api_key")),
        model=pick("OPENROUTER_MODEL", llm_section, "model", DEFAULT_LLM_MODEL),
        base_url=pick("OPENROUTER_BASE_URL", llm_section, "base_url", DEFAULT_LLM_BASE_URL),
        temperature=_parse_float("llm.temperature", llm_section.get("temperature", 0.1)),
        max_tokens=_parse_int("llm.max_tokens", llm_section.get("max_tokens", 500)),
        timeout=_parse_float("llm.timeout", llm_section.get("timeout", 60.0)),
    )

    smtp = SmtpConfig(
        host=pick("SMTP_HOST", smtp_section, "host"),
        port=_parse_int("SMTP_PORT", pick("SMTP_PORT", smtp_section, "port", 587), maximum=65535),
        user=pick("SMTP_USER", smtp_section, "user"),
        password=sanitize_secret(pick("SMTP_PASS", smtp_section, "password")),
        from_address=pick("SMTP_FROM", smtp_section, "from_address"),
        timeout=_parse_int("smtp.timeout", smtp_section.get("timeout", 30)),
    )

    send_mode = str(pick("TRENDS_SEND_MODE", report_section, "send_mode", "smtp")).lower()
    if send_mode not in ("smtp", "demo"):
        raise ConfigError(f"Invalid TRENDS_SEND_MODE: {send_mode}")
    report = ReportConfig(
        recipients=parse_recipients(pick("REPORT_RECIPIENTS", report_section, "recipients")),
        send_mode=send_mode,
        demo_output_path=report_section.get("demo_output_path", ReportConfig.demo_output_path),
    )

    storage = StorageConfig(
        database_url=pick("DATABASE_URL", storage_section, "database_url"),
        db_path=pick("TRENDS_DB_PATH", storage_section, "db_path", DEFAULT_DB_PATH),
    )

    config = AppConfig(
        arxiv=arxiv,
        llm=llm,
        smtp=smtp,
        report=report,
        storage=storage,
        classify_workers=_parse_int(
            "TRENDS_CLASSIFY_WORKERS", pick("TRENDS_CLASSIFY_WORKERS", data, "classify_workers", 1)
        ),
    )

    logger.info(
        "Loaded config: categories=%s max_results=%d days_back=%d model=%s backend=%s recipients=%d",
        ",".join(config.arxiv.categories),
        config.arxiv.max_results,
        config.arxiv.days_back,
        config.llm.model,
        "postgres" if config.storage.is_postgres else "sqlite",
        len(config.report.recipients),
    )
    return config
