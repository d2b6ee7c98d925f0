"""Main CLI entry point for dockdiver."""

import argparse
import json
import sys
import logging
from contextlib import contextmanager
from typing import Dict, Any

from .config.settings import Config
from .errors import AuthorizationError, DataError, ProxyError
from .models.registry import Endpoint
from .operations.dump import DumpOperation
from .operations.probe import detect_registry_version, normalize_endpoint, target_address
from .utils.logger import setup_logging, sanitize_url


logger = logging.getLogger(__name__)


def print_json_output(data: Dict[str, Any]):
    """Print formatted JSON output."""
    print(json.dumps(data, indent=2))


def build_config(args) -> Config:
    return Config(
        config_path=args.config,
        url=args.url,
        port=args.port,
        username=args.username,
        password=args.password,
        bearer=args.bearer,
        headers=args.headers,
        rate=args.rate,
        output_dir=args.dir,
        insecure=args.insecure or None,
        proxy=args.proxy,
        proxy_username=args.proxy_username,
        proxy_password=args.proxy_password,
        timeout=args.timeout,
        num_workers=getattr(args, 'num_workers', None),
        force_blobs=getattr(args, 'force_blobs', False) or None
    )


@contextmanager
def connected_operation(config: Config):
    """Build the client, open the proxy if any, and resolve the registry endpoint."""
    client = config.build_client()
    try:
        logger.info(f"Selected User-Agent: {config.user_agent}")
        if config.proxy:
            host, port = target_address(config.url, config.port)
            try:
                client.use_proxy(
                    config.proxy,
                    Endpoint("http", host, port),
                    proxy_username=config.proxy_username,
                    proxy_password=config.proxy_password,
                    connect_timeout=config.proxy_timeout
                )
            except ProxyError:
                logger.warning(
                    f"Debug: Test proxy with: curl -v --proxy {sanitize_url(config.proxy)} {config.url}"
                )
                raise

        endpoint = normalize_endpoint(config.url, config.port, client)
        logger.info(f"Using validated URL: {endpoint.base_url}")
        logger.info(f"Registry API Version: {detect_registry_version(endpoint, client)}")

        if not config.auth.has_credentials:
            logger.warning("No authentication provided (no username/password or bearer token). "
                           "Proceeding without auth...")
        if config.insecure:
            logger.warning("TLS verification disabled (insecure mode enabled)")

        yield DumpOperation(
            client,
            endpoint,
            config.auth,
            config.output_dir,
            num_workers=config.num_workers,
            force_blobs=config.force_blobs,
            page_size=config.page_size
        )
    finally:
        client.close()


def report_failure(operation: str, error: Exception):
    """Log guidance for the error and print the failure document."""
    logger.error(f"{operation} failed: {error}")
    if isinstance(error, AuthorizationError):
        logger.warning("Authentication required. Please provide valid credentials using "
                       "--username and --password or --bearer.")
    if isinstance(error, DataError) and error.suggestion:
        logger.warning(f"Debug: Check the registry response with: {error.suggestion}")

    output = {
        "Operation": operation,
        "Status": "Failed",
        "Error": str(error)
    }
    url = getattr(error, 'url', None)
    if url:
        output["URL"] = url
    print_json_output(output)
    sys.exit(1)


def handle_list(args):
    """Handle list command."""
    try:
        config = build_config(args)
        with connected_operation(config) as operation:
            repositories = operation.list_repositories()

        for repo in repositories:
            logger.info(f"Repository: {repo}")

        print_json_output({
            "Operation": "List",
            "Registry": operation.endpoint.base_url,
            "Repositories": repositories
        })

    except Exception as e:
        report_failure("List", e)


def handle_dump(args):
    """Handle dump command."""
    try:
        config = build_config(args)
        with connected_operation(config) as operation:
            operation.prepare()
            result = operation.dump_repository(args.repository)

        output = {
            "Operation": "Dump",
            "Registry": operation.endpoint.base_url,
            "OutputDir": config.output_dir,
            "Repository": result.to_dict()
        }
        print_json_output(output)

        if result.failed_blobs > 0:
            sys.exit(1)
        logger.info(f"Dumped {args.repository} successfully")

    except Exception as e:
        report_failure("Dump", e)


def handle_dump_all(args):
    """Handle dump-all command."""
    try:
        config = build_config(args)
        with connected_operation(config) as operation:
            operation.prepare()
            summary = operation.dump_all_repositories()

        output = {
            "Operation": "DumpAll",
            "Registry": operation.endpoint.base_url,
            "OutputDir": config.output_dir,
            "Summary": summary.to_dict()
        }
        print_json_output(output)

        if summary.status != "Success":
            sys.exit(1)
        logger.info("Dump completed successfully")

    except Exception as e:
        report_failure("DumpAll", e)


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='dockdiver',
        description='Enumerates a remote container registry and dumps manifests, configs and layers to disk.'
    )

    parser.add_argument('--url', help='Base URL or hostname of the registry (e.g. http://example.com or example.com)')
    parser.add_argument('--port', type=int, help='Port of the registry, used if not in the URL (default: 5000)')
    parser.add_argument('--username', help='Username for Basic authentication')
    parser.add_argument('--password', help='Password for Basic authentication')
    parser.add_argument('--bearer', help='Bearer token for Authorization')
    parser.add_argument('--headers', help='Custom headers as JSON (e.g. \'{"X-Custom": "Value"}\')')
    parser.add_argument('--rate', type=float, help='Requests per second (default: 3)')
    parser.add_argument('--dir', help='Output directory for dumped files (default: docker_dump)')
    parser.add_argument('--insecure', action='store_true', help='Skip TLS certificate verification')
    parser.add_argument(
        '--proxy',
        help='Proxy URL (e.g. http://127.0.0.1:8080, https://proxy.com:8443 or socks5://127.0.0.1:1080)'
    )
    parser.add_argument('--proxy-username', help='Username for proxy authentication')
    parser.add_argument('--proxy-password', help='Password for proxy authentication')
    parser.add_argument('--timeout', type=float, help='HTTP request timeout in seconds (default: 30)')
    parser.add_argument('--config', help='YAML configuration file (default: $DOCKDIVER_CONFIG)')
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='INFO',
        help='Set logging level (default: INFO)'
    )
    parser.add_argument(
        '--log-file',
        help='Log to file in addition to console'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    list_parser = subparsers.add_parser(
        'list',
        help='List all repositories',
        description='List every repository in the registry catalog.'
    )
    list_parser.set_defaults(func=handle_list)

    dump_parser = subparsers.add_parser(
        'dump',
        help='Dump a specific repository',
        description='Dump the manifest, config and layers of the first tag of a repository.'
    )
    dump_parser.add_argument('repository', help='Repository to dump')
    dump_parser.add_argument(
        '--force-blobs',
        action='store_true',
        help='Download blobs even if they already exist in the output directory'
    )
    dump_parser.set_defaults(func=handle_dump)

    dump_all_parser = subparsers.add_parser(
        'dump-all',
        help='Dump all repositories',
        description='Dump every repository in the catalog with bounded concurrency.'
    )
    dump_all_parser.add_argument(
        '--force-blobs',
        action='store_true',
        help='Download blobs even if they already exist in the output directory'
    )
    dump_all_parser.add_argument(
        '--num-workers',
        type=int,
        help='Number of repositories to dump in parallel (default: 5)'
    )
    dump_all_parser.set_defaults(func=handle_dump_all)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.log_level, args.log_file)

    args.func(args)


if __name__ == '__main__':
    main()
