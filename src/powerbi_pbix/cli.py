from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional, Sequence

from .auth import BearerTokenAuth, select_token_source
from .client import PowerBIClient
from .config import DeployerConfig, load_config
from .errors import PowerBIError
from .imports import ImportStateMachine
from .lifecycle import PBIXDeployer
from .models import ArtifactSpec, ArtifactState, DatasourceRule, ParameterBinding
from .state import JsonFileStateStore, StateStore, state_to_dict

LOGGER = logging.getLogger(__name__)

DATASOURCE_FIELDS = {
    "type",
    "database",
    "server",
    "url",
    "original_database",
    "original_server",
    "original_url",
}


def build_deployer(config: DeployerConfig) -> PBIXDeployer:
    """Wire the authenticated client, import poller and deployer from configuration."""
    source = select_token_source(config.auth, config.powerbi.az_process_timeout_seconds)
    client = PowerBIClient(config.powerbi, auth=BearerTokenAuth(source))
    imports = ImportStateMachine(client, poll_interval_seconds=config.powerbi.poll_interval_seconds)
    return PBIXDeployer(
        client,
        imports=imports,
        default_timeout_seconds=config.powerbi.operation_timeout_seconds,
    )


def parse_parameter(raw: str) -> ParameterBinding:
    name, sep, value = raw.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"Expected NAME=VALUE, got {raw!r}")
    return ParameterBinding(name=name.strip(), value=value)


def parse_datasource(raw: str) -> DatasourceRule:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise argparse.ArgumentTypeError(f"Datasource must be a JSON object: {exc}") from exc
    if not isinstance(data, dict):
        raise argparse.ArgumentTypeError("Datasource must be a JSON object.")
    unknown = set(data) - DATASOURCE_FIELDS
    if unknown:
        raise argparse.ArgumentTypeError("Unknown datasource field(s): " + ", ".join(sorted(unknown)))
    return DatasourceRule(**{key: (str(value) if value is not None else None) for key, value in data.items()})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="powerbi-pbix", description="Deploy a PBIX file to a Power BI workspace.")
    parser.add_argument("--state", default="powerbi-pbix.state.json", help="Path of the local state file.")
    parser.add_argument("--env-file", default=".env", help="Optional dotenv file with POWERBI_* settings.")
    parser.add_argument("--key", required=True, help="Name under which the artifact is tracked in the state file.")
    parser.add_argument("--timeout", type=float, default=None, help="Operation timeout in seconds.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    apply = subparsers.add_parser("apply", help="Create or update the artifact.")
    apply.add_argument("--workspace-id", required=True)
    apply.add_argument("--name", required=True)
    apply.add_argument("--source", required=True, help="Path to the PBIX file.")
    apply.add_argument("--source-hash", default=None, help="Content hash; a change forces a re-import.")
    apply.add_argument("--skip-report", action="store_true", help="Deploy only the dataset.")
    apply.add_argument("--rebind-dataset-id", default=None)
    apply.add_argument(
        "--parameter",
        dest="parameters",
        action="append",
        type=parse_parameter,
        default=[],
        help="Dataset parameter NAME=VALUE. Provide multiple times for several parameters.",
    )
    apply.add_argument(
        "--datasource",
        dest="datasources",
        action="append",
        type=parse_datasource,
        default=[],
        help='Datasource rule as JSON, e.g. \'{"type": "sql", "server": "new", "original_server": "old"}\'.',
    )

    subparsers.add_parser("read", help="Refresh the tracked state from the service.")
    subparsers.add_parser("destroy", help="Delete the report and dataset.")
    return parser


def run(args: argparse.Namespace, deployer: PBIXDeployer, store: StateStore) -> Optional[ArtifactState]:
    current = store.get(args.key)

    if args.command == "apply":
        spec = ArtifactSpec(
            workspace_id=args.workspace_id,
            name=args.name,
            source=args.source,
            source_hash=args.source_hash,
            skip_report=args.skip_report,
            parameters=tuple(args.parameters),
            datasources=tuple(args.datasources),
            rebind_dataset_id=args.rebind_dataset_id,
        )
        if current is not None and (current.workspace_id != spec.workspace_id or current.name != spec.name):
            LOGGER.info("Workspace or name changed; replacing '%s'", args.key)
            deployer.delete_artifact(current)
            store.remove(args.key)
            current = None
        if current is None:
            result = deployer.create_artifact(spec, args.timeout)
        else:
            result = deployer.update_artifact(current, spec, args.timeout)
        store.put(args.key, result)
        return result

    if current is None:
        raise ValueError(f"No artifact tracked under key '{args.key}'.")

    if args.command == "read":
        refreshed = deployer.read_artifact(current, args.timeout)
        if refreshed is None:
            store.remove(args.key)
        else:
            store.put(args.key, refreshed)
        return refreshed

    deployer.delete_artifact(current)
    store.remove(args.key)
    return None


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(env_file=args.env_file)
    except ValueError as exc:
        parser.error(str(exc))
    logging.basicConfig(level=config.powerbi.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    store = JsonFileStateStore(args.state)
    try:
        with build_deployer(config) as deployer:
            result = run(args, deployer, store)
    except (PowerBIError, OSError, ValueError) as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1

    payload = state_to_dict(result) if result is not None else {}
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
