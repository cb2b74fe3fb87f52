import argparse
import os
import sys

from loguru import logger

from core.config import Settings
from core.engine import ContainerEngine
from core.errors import ConfigError
from core.logging import setup_logging
from core.orchestrator import DeployOrchestrator
from core.pipeline import Pipeline
from core.secrets_manager import SecretsManager

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="deployer")
    sub = parser.add_subparsers(dest="command", required=True)

    deploy = sub.add_parser("deploy", help="Replace the running instance with an image")
    deploy.add_argument(
        "image", nargs="?", help="Image reference (default: REGISTRY_URL/IMAGE_NAME:IMAGE_TAG)"
    )

    pipeline = sub.add_parser("pipeline", help="Build, push and deploy from a source directory")
    pipeline.add_argument("context", help="Directory containing the Dockerfile")
    pipeline.add_argument("--branch", help="Branch name used in the image tag")
    pipeline.add_argument("--commit", help="Commit hash used in the image tag")

    serve = sub.add_parser("serve", help="Run the HTTP deploy service")
    serve.add_argument("--host", default="0.0.0.0")  # nosec B104
    serve.add_argument("--port", type=int, default=8000)
    return parser


def cmd_deploy(settings: Settings, image) -> int:
    orchestrator = DeployOrchestrator.from_settings(settings)
    ref = image or str(settings.image_reference())
    result = orchestrator.deploy(ref)

    if not result.ok:
        logger.critical(f"Deployment failed [{result.error_kind.value}]: {result.error}")
        if result.previous_image:
            logger.info(f"Previous image was {result.previous_image}; deploy it to roll back")
        return EXIT_FAILED

    logger.success(f"Deployed {result.image} successfully!")
    logger.success(f"Container ID: {result.container_id[:12] if result.container_id else 'N/A'}")
    return EXIT_OK


def cmd_pipeline(settings: Settings, context: str, branch=None, commit=None) -> int:
    if not os.path.isdir(context):
        logger.error(f"Path {context} does not exist")
        return EXIT_USAGE

    secrets = SecretsManager(settings.secrets_mode)
    builder = ContainerEngine(auth_config=secrets.registry_auth())
    pipeline = Pipeline(settings, builder, DeployOrchestrator.from_settings(settings, secrets))
    result = pipeline.run(context, branch=branch, commit=commit)

    if not result.ok:
        logger.critical(
            f"Pipeline failed at {result.failed_stage} "
            f"[{result.error_kind.value if result.error_kind else 'unknown'}]: {result.error}"
        )
        return EXIT_FAILED
    logger.success(f"Pipeline deployed {result.image}")
    return EXIT_OK


def cmd_serve(host: str, port: int) -> int:
    import uvicorn

    uvicorn.run("api.server:app", host=host, port=port)
    return EXIT_OK


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_USAGE
    setup_logging(settings.log_level)

    try:
        if args.command == "deploy":
            return cmd_deploy(settings, args.image)
        if args.command == "pipeline":
            return cmd_pipeline(settings, args.context, args.branch, args.commit)
        return cmd_serve(args.host, args.port)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_USAGE
    except Exception as e:
        logger.exception(f"Fatal error during execution: {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
