import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Dict, Optional, Sequence

from dotenv import load_dotenv

from .api import build_engine
from .config import BASE_DIR, Config
from .config import load_config as load_runtime_config
from .errors import QuoteError, ValidationError
from .formula import BASE_VARIABLES, parse_formula
from .loader import check_pricing_data, load_pricing_data
from .money import format_money, to_decimal
from .policy import apply_policy_defaults
from .reporting import make_summary_text
from .serialization import dumps_response, load_request

logger = logging.getLogger(__name__)

EXIT_CODES: Dict[str, int] = {
    "validation": 2,
    "configuration": 3,
    "formula": 4,
    "computation": 5,
}


def _resolve_output(value: str, cfg: Config) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute() and path.parent == Path("."):
        path = cfg.output_dir / path
    return path.resolve()


def cmd_price(cfg: Config, args: argparse.Namespace) -> int:
    request = load_request(Path(args.request))
    engine = build_engine(cfg)
    response = engine.compute(request)
    text = dumps_response(response)
    if args.output:
        out_path = _resolve_output(args.output, cfg)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(text + "\n", encoding="utf-8")
        logger.info("Quote written to %s", out_path)
    else:
        print(text)
    if args.summary:
        print(make_summary_text(response), end="")
    return 0


def _parse_bindings(values: Sequence[str]):
    bindings = {}
    for item in values or []:
        name, sep, raw = item.partition("=")
        name = name.strip()
        if not sep or not name:
            raise ValidationError(f"Expected name=value, got '{item}'", field="--var")
        bindings[name] = to_decimal(raw, field=f"--var {name}")
    return bindings


def cmd_check_formula(cfg: Config, args: argparse.Namespace) -> int:
    formula = parse_formula(
        args.formula.strip(),
        max_length=cfg.formula_max_length,
        max_depth=cfg.formula_max_depth,
    )
    bindings = _parse_bindings(args.var)
    formula.require_variables(BASE_VARIABLES + tuple(bindings))
    print(f"Formula OK; variables: {', '.join(sorted(formula.variables)) or '(none)'}")
    unbound = sorted(formula.variables - set(bindings))
    if unbound:
        print(f"Not evaluated; bind {', '.join(unbound)} with --var to evaluate")
        return 0
    print(f"Result: {format_money(formula.evaluate(bindings))}")
    return 0


def cmd_validate_data(cfg: Config, args: argparse.Namespace) -> int:
    data = load_pricing_data(cfg.data_path, default_tax_base=cfg.tax_base)
    problems = check_pricing_data(
        data,
        max_formula_length=cfg.formula_max_length,
        max_formula_depth=cfg.formula_max_depth,
    )
    for problem in problems:
        print(json.dumps(problem.to_dict()))
    if problems:
        logger.warning("%s problem(s) found in %s", len(problems), cfg.data_path)
        return EXIT_CODES["configuration"]
    print(f"{cfg.data_path}: {len(data.catalog)} product(s), {len(data.tenants)} tenant(s), no problems found")
    return 0


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="quotecalc", description="Price painting quotes from contractor rate tables")
    parser.add_argument("--data", help="Pricing data file (JSON or YAML)")
    parser.add_argument("--output-dir", help="Directory for written quotes")
    parser.add_argument("--tax-base", choices=["pre_markup", "post_markup", "running_total"],
                        help="Tax base for rate tables that do not name one")
    parser.add_argument("-v", "--verbose", action="store_true", help="Increase logging verbosity")
    sub = parser.add_subparsers(dest="command", required=True)

    price = sub.add_parser("price", help="Price a quote request JSON file")
    price.add_argument("request", help="Path to the quote request JSON")
    price.add_argument("--output", help="Write the quote JSON here instead of stdout")
    price.add_argument("--summary", action="store_true", help="Also print a tabular summary")
    price.set_defaults(handler=cmd_price)

    check = sub.add_parser("check-formula", help="Parse a pricing formula and optionally evaluate it")
    check.add_argument("formula", help="Formula text, e.g. \"(sqft * baseRate) + materialCost\"")
    check.add_argument("--var", action="append", default=[], metavar="NAME=VALUE", help="Bind a variable")
    check.set_defaults(handler=cmd_check_formula)

    validate = sub.add_parser("validate-data", help="Check a pricing data file for configuration problems")
    validate.set_defaults(handler=cmd_validate_data)
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv(BASE_DIR / ".env")
    args = parse_args(argv)
    runtime_cfg = load_runtime_config(os.environ, args)
    log_level = logging.DEBUG if runtime_cfg.verbose else logging.INFO
    logging.basicConfig(level=log_level, format="%(message)s")
    try:
        if apply_policy_defaults(runtime_cfg.policy_path):
            runtime_cfg = load_runtime_config(os.environ, args)
        return args.handler(runtime_cfg, args)
    except QuoteError as exc:
        logger.debug("Quote computation aborted", exc_info=True)
        sys.stderr.write(json.dumps(exc.to_dict()) + "\n")
        return EXIT_CODES.get(exc.kind, 1)
    except Exception:  # pragma: no cover
        logger.exception("Fatal error during quote computation")
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
