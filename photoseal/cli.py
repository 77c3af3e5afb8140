"""Command-line interface wiring for photoseal."""
from __future__ import annotations

import argparse
import json
import logging
import sys
import uuid
from datetime import date
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, TypeVar

import numpy as np
import yaml
from tqdm import tqdm

from .errors import PhotosealError
from .io_utils import (
    ProcessingContext,
    carrier_from_image,
    extract_photo_region,
    is_card_image,
    load_portrait,
    load_rgb_array,
    paste_photo_region,
    save_png,
)
from .marker import detect_marker_in_region, embed_marker_in_region
from .payload import date_to_days, days_to_date, default_expiration, parse_card_id, random_card_id
from .pipeline import IssuanceRequest, issue_credential, verify_credential
from .profiles import DEFAULT_CARD_LAYOUT, DEFAULT_PROFILE_NAME, WATERMARK_PROFILES
from .signing import (
    generate_keypair,
    load_private_key,
    load_public_key,
    public_key_document,
    save_private_key,
    save_public_key,
)

LOGGER = logging.getLogger("photoseal")

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_REJECTED = 2

COMMANDS = ("keygen", "issue", "verify", "marker-embed", "marker-detect")

T = TypeVar("T")


def _load_config_data(path: Path) -> Mapping[str, Any]:
    """Load configuration from a JSON or YAML file.

    Args:
        path: Path to configuration file (.json, .yaml, or .yml).

    Returns:
        Dictionary mapping configuration keys to values.

    Raises:
        FileNotFoundError: If configuration file doesn't exist.
        ValueError: If file content is not a valid mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()
    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(path.read_text())
        else:
            data = json.loads(path.read_text())
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ValueError(f"Unable to parse configuration file {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Configuration file {path} must contain a mapping of option names to values")
    return data


def _normalise_config_keys(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Convert configuration keys to CLI-compatible underscore format.

    Keys naming a subcommand keep their hyphens so ``marker-embed`` sections
    still resolve.
    """
    normalised: dict[str, Any] = {}
    for key, value in raw.items():
        if not isinstance(key, str):
            raise ValueError("Configuration keys must be strings")
        normalised[key if key in COMMANDS else key.replace("-", "_")] = value
    return normalised


def _build_parser_aliases(parser: argparse.ArgumentParser) -> tuple[dict[str, argparse.Action], dict[str, str]]:
    """Build lookup tables mapping argument names to parser actions.

    Returns:
        Tuple of (dest_to_action, alias_to_dest) dictionaries for resolving
        configuration file keys to parser actions.
    """
    dest_to_action: dict[str, argparse.Action] = {}
    alias_to_dest: dict[str, str] = {}
    for action in parser._actions:
        if action.dest in {argparse.SUPPRESS, "help", "config", "command"}:
            continue
        if isinstance(action, argparse._SubParsersAction):  # type: ignore[attr-defined]
            continue
        dest_to_action[action.dest] = action
        alias_to_dest[action.dest] = action.dest
        for option_string in action.option_strings:
            alias = option_string.lstrip("-").replace("-", "_")
            alias_to_dest[alias] = action.dest
    return dest_to_action, alias_to_dest


def _coerce_config_value(action: argparse.Action, value: Any, *, source: Path, key: str) -> Any:
    """Convert configuration values so they match argparse expectations."""

    if value is None:
        return None

    if isinstance(action, (argparse._StoreTrueAction, argparse._StoreFalseAction)):  # type: ignore[attr-defined]
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {"1", "true", "yes", "on"}:
                return True
            if lowered in {"0", "false", "no", "off"}:
                return False
        raise ValueError(
            f"Invalid boolean for '{key}' in {source}: expected true/false value, got {value!r}"
        )

    if action.nargs in ("+", "*"):
        items = value if isinstance(value, list) else [value]
        if action.type is None:
            return items
        try:
            return [action.type(item) for item in items]
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for '{key}' in {source}: {exc}") from exc

    if action.type is not None:
        try:
            converted = action.type(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for '{key}' in {source}: {exc}") from exc
    else:
        converted = value

    if action.choices is not None and converted not in action.choices:
        raise ValueError(
            f"Invalid value for '{key}' in {source}: {converted!r} (choose from {sorted(action.choices)})"
        )

    return converted


def _config_defaults(
    parser: argparse.ArgumentParser, options: Mapping[str, Any], *, source: Path, strict: bool
) -> tuple[dict[str, Any], set[str]]:
    dest_to_action, alias_to_dest = _build_parser_aliases(parser)
    converted: dict[str, Any] = {}
    unknown: set[str] = set()
    for key, value in options.items():
        dest = alias_to_dest.get(key)
        if dest is None:
            if strict:
                raise ValueError(f"Unknown configuration option '{key}' in {source}")
            unknown.add(key)
            continue
        converted[dest] = _coerce_config_value(dest_to_action[dest], value, source=source, key=key)
    return converted, unknown


def _apply_config(
    parser: argparse.ArgumentParser,
    subparsers: Mapping[str, argparse.ArgumentParser],
    path: Path,
) -> None:
    """Turn a configuration file into parser defaults.

    Top-level keys apply to the global options and to every subcommand that
    knows them. A mapping stored under a subcommand name applies to that
    subcommand only.
    """
    config = _normalise_config_keys(_load_config_data(path))
    shared = {key: value for key, value in config.items() if key not in COMMANDS}

    global_defaults, leftover = _config_defaults(parser, shared, source=path, strict=False)
    parser.set_defaults(**global_defaults)

    claimed: set[str] = set()
    for name, subparser in subparsers.items():
        defaults, unknown = _config_defaults(subparser, shared, source=path, strict=False)
        claimed.update(set(shared) - unknown)
        section = config.get(name)
        if section is not None:
            if not isinstance(section, Mapping):
                raise ValueError(f"Section '{name}' in {path} must be a mapping")
            scoped, _ = _config_defaults(subparser, _normalise_config_keys(section), source=path, strict=True)
            defaults.update(scoped)
        subparser.set_defaults(**defaults)

    orphaned = sorted(leftover - claimed)
    if orphaned:
        raise ValueError(f"Unknown configuration option '{orphaned[0]}' in {path}")


def _parse_date(value: Any) -> date:
    return days_to_date(date_to_days(value))


def default_output_path(source: Path, suffix: str = "_sealed") -> Path:
    """Return the default PNG destination next to *source*."""

    return source.with_name(f"{source.stem}{suffix}.png")


def _wrap_with_progress(iterable: Iterable[T], *, total: int, description: str, enabled: bool) -> Iterable[T]:
    if not enabled:
        return iterable
    return tqdm(iterable, total=total, desc=description, unit="image")


def build_parser() -> tuple[argparse.ArgumentParser, dict[str, argparse.ArgumentParser]]:
    parser = argparse.ArgumentParser(
        prog="photoseal",
        description="Issue and verify signed credentials hidden in ID card photos.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional configuration file (JSON, or YAML for .yaml/.yml)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    subparsers: dict[str, argparse.ArgumentParser] = {}

    def add_profile(target: argparse.ArgumentParser) -> None:
        target.add_argument(
            "--profile",
            default=DEFAULT_PROFILE_NAME,
            choices=sorted(WATERMARK_PROFILES.keys()),
            help="Watermark profile; issuer and verifier must agree",
        )

    keygen = sub.add_parser("keygen", help="Generate an Ed25519 issuer key pair")
    keygen.add_argument("--out-dir", type=Path, default=Path("."), help="Folder for the key files")
    keygen.add_argument("--prefix", default="issuer", help="Key file name prefix")
    keygen.add_argument("--overwrite", action="store_true", help="Replace existing key files")
    subparsers["keygen"] = keygen

    issue = sub.add_parser("issue", help="Sign claims and embed them into a photo")
    issue.add_argument("photo", type=Path, help="Portrait, or a canonical card image to re-seal in place")
    issue.add_argument("--private-key", type=Path, default=None, help="Issuer private key JSON file")
    issue.add_argument("--issuer-id", type=int, default=None, help="Issuer identifier (0-65535)")
    issue.add_argument("--card-id", type=parse_card_id, default=None, help="Card id as 32 hex digits (random when omitted)")
    issue.add_argument("--expires", type=_parse_date, default=None, help="Expiration date YYYY-MM-DD (one year when omitted)")
    issue.add_argument("--name", dest="full_name", default="", help="Cardholder full name, bound by hash")
    issue.add_argument("--output", type=Path, default=None, help="Destination PNG (defaults to '<photo>_sealed.png')")
    issue.add_argument("--report", type=Path, default=None, help="Write a JSON issuance summary")
    issue.add_argument("--overwrite", action="store_true", help="Replace an existing output file")
    add_profile(issue)
    subparsers["issue"] = issue

    verify = sub.add_parser("verify", help="Verify credentials hidden in one or more photos")
    verify.add_argument("images", type=Path, nargs="+", help="Sealed photos or canonical card images")
    verify.add_argument("--public-key", type=Path, default=None, help="Issuer public key JSON file")
    verify.add_argument("--name", dest="full_name", default=None, help="Check the claims against this name")
    verify.add_argument("--report", type=Path, default=None, help="Write the JSON report to a file")
    verify.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress reporting (useful for minimal or non-interactive environments)",
    )
    add_profile(verify)
    subparsers["verify"] = verify

    marker_embed = sub.add_parser("marker-embed", help="Embed the legacy public marker")
    marker_embed.add_argument("photo", type=Path, help="Photo region or canonical card image")
    marker_embed.add_argument("--output", type=Path, default=None, help="Destination PNG (defaults to '<photo>_marked.png')")
    marker_embed.add_argument("--overwrite", action="store_true", help="Replace an existing output file")
    subparsers["marker-embed"] = marker_embed

    marker_detect = sub.add_parser("marker-detect", help="Scan photos for the legacy public marker")
    marker_detect.add_argument("images", type=Path, nargs="+", help="Photo regions or canonical card images")
    subparsers["marker-detect"] = marker_detect

    return parser, subparsers


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser, subparsers = build_parser()
    argv_list = list(argv) if argv is not None else None

    probe = argparse.ArgumentParser(add_help=False, allow_abbrev=False)
    probe.add_argument("--config", type=Path, default=None)
    config_probe, _ = probe.parse_known_args(argv_list)
    if config_probe.config is not None:
        try:
            _apply_config(parser, subparsers, config_probe.config)
        except (OSError, ValueError) as exc:
            parser.error(str(exc))

    args = parser.parse_args(argv_list)
    command_parser = subparsers[args.command]
    if args.command == "issue":
        if args.private_key is None:
            command_parser.error("--private-key is required (on the command line or in --config)")
        if args.issuer_id is None:
            command_parser.error("--issuer-id is required (on the command line or in --config)")
    elif args.command == "verify" and args.public_key is None:
        command_parser.error("--public-key is required (on the command line or in --config)")

    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s: %(message)s")
    return args


def _write_json(path: Path, data: Any) -> None:
    with ProcessingContext(path) as staged:
        staged.write_text(json.dumps(data, indent=2) + "\n")


def _emit(data: Any, report: Optional[Path] = None) -> None:
    text = json.dumps(data, indent=2)
    if report is not None:
        _write_json(report, data)
        LOGGER.info("Wrote report %s", report)
    print(text)


def _guard_destination(destination: Path, overwrite: bool) -> None:
    if destination.exists() and not overwrite:
        raise SystemExit(f"{destination} exists, use --overwrite to replace")


def run_keygen(args: argparse.Namespace) -> int:
    public_path = args.out_dir / f"{args.prefix}_public.json"
    private_path = args.out_dir / f"{args.prefix}_private.json"
    for path in (public_path, private_path):
        _guard_destination(path, args.overwrite)

    args.out_dir.mkdir(parents=True, exist_ok=True)
    signing_key, verify_key = generate_keypair()
    save_private_key(private_path, signing_key)
    save_public_key(public_path, verify_key)
    LOGGER.info("Generated issuer key pair in %s", args.out_dir)
    _emit({"public_key": str(public_path), "private_key": str(private_path), **public_key_document(verify_key)})
    return EXIT_OK


def run_issue(args: argparse.Namespace) -> int:
    layout = DEFAULT_CARD_LAYOUT
    destination = args.output or default_output_path(args.photo)
    _guard_destination(destination, args.overwrite)

    signing_key = load_private_key(args.private_key)
    source = load_rgb_array(args.photo)
    card: Optional[np.ndarray] = None
    if is_card_image(source, layout):
        card = source
        carrier = extract_photo_region(card, layout)
    else:
        carrier = load_portrait(args.photo, layout)

    request = IssuanceRequest(
        issuer_id=args.issuer_id,
        card_id=args.card_id or random_card_id(),
        expiration_date=args.expires or default_expiration(),
        full_name=args.full_name,
    )
    result = issue_credential(request, signing_key, carrier, WATERMARK_PROFILES[args.profile])
    output = paste_photo_region(card, result.carrier, layout) if card is not None else result.carrier
    save_png(destination, output)

    summary = {
        "output": str(destination),
        "card_id": request.card_id.hex(),
        "expiration_date": _parse_date(request.expiration_date).isoformat(),
        **result.summary(),
    }
    _emit(summary, args.report)
    return EXIT_OK


def run_verify(args: argparse.Namespace) -> int:
    run_id = uuid.uuid4().hex
    public_key = load_public_key(args.public_key)
    profile = WATERMARK_PROFILES[args.profile]
    LOGGER.info("Starting verification run %s for %s image(s)", run_id, len(args.images))

    entries: List[dict[str, Any]] = []
    images = _wrap_with_progress(
        args.images, total=len(args.images), description="Verifying", enabled=not args.no_progress
    )
    for image_path in images:
        try:
            carrier = carrier_from_image(load_rgb_array(image_path))
            result = verify_credential(carrier, public_key, profile)
        except (OSError, PhotosealError) as exc:
            LOGGER.error("Could not verify %s: %s", image_path, exc)
            entries.append({"image": str(image_path), "status": "error", "verified": False, "reason": str(exc)})
            continue
        entry = {"image": str(image_path), **result.as_dict()}
        if result.claims is not None:
            entry["expired"] = result.is_expired()
        if args.full_name is not None:
            entry["name_matches"] = result.name_matches(args.full_name)
        entries.append(entry)

    accepted = sum(1 for entry in entries if entry["verified"])
    LOGGER.info("Finished verification run %s; %s of %s verified", run_id, accepted, len(entries))
    _emit({"run_id": run_id, "results": entries}, args.report)
    return EXIT_OK if accepted == len(entries) else EXIT_REJECTED


def run_marker_embed(args: argparse.Namespace) -> int:
    destination = args.output or default_output_path(args.photo, "_marked")
    _guard_destination(destination, args.overwrite)

    source = load_rgb_array(args.photo)
    if is_card_image(source):
        region, step = embed_marker_in_region(extract_photo_region(source))
        output = paste_photo_region(source, region)
    else:
        output, step = embed_marker_in_region(source)
    save_png(destination, output)
    _emit({"output": str(destination), "strength": step})
    return EXIT_OK


def run_marker_detect(args: argparse.Namespace) -> int:
    entries = []
    for image_path in args.images:
        report = detect_marker_in_region(carrier_from_image(load_rgb_array(image_path)))
        entries.append(
            {"image": str(image_path), "verified": report.verified, "score": report.percent, "strength": report.step}
        )
    _emit({"results": entries})
    return EXIT_OK if all(entry["verified"] for entry in entries) else EXIT_REJECTED


HANDLERS = {
    "keygen": run_keygen,
    "issue": run_issue,
    "verify": run_verify,
    "marker-embed": run_marker_embed,
    "marker-detect": run_marker_detect,
}


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    try:
        return HANDLERS[args.command](args)
    except (OSError, PhotosealError) as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return EXIT_USAGE


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())


__all__ = [
    "build_parser",
    "default_output_path",
    "main",
    "parse_args",
    "run_issue",
    "run_keygen",
    "run_marker_detect",
    "run_marker_embed",
    "run_verify",
]
