# src/streamjob/cli.py
"""Command line for job scripts.

A job script builds its Runner and hands control to main():

    runner = Runner("wordcount", [WordCount()], inputs=["/logs/*.gz"])
    if __name__ == "__main__":
        main(runner)

The same command line serves both modes. The operator runs
``python wordcount.py --submit-job``; the engine runs
``python3 streamjob_job.py --step=N --stage=mapper`` on every node.
Unknown options are accepted so a script can define its own pass-through
flags.
"""

from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError

from streamjob import __version__
from streamjob.contracts.enums import Stage
from streamjob.contracts.errors import ConfigurationError, InfrastructureError
from streamjob.core.config import load_settings
from streamjob.core.logging import configure_logging
from streamjob.runner import Runner

__all__ = ["main", "make_app"]

# Exit code for configuration problems; 1 is a failed stage or step
EXIT_CONFIGURATION = 2


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"streamjob version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file without overriding existing ones.

    Raises:
        typer.Exit: If an explicit env_file doesn't exist
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(EXIT_CONFIGURATION)
        return load_dotenv(env_file, override=False)
    return load_dotenv(override=False)


def make_app(runner: Runner) -> typer.Typer:
    """Typer application bound to runner."""
    app = typer.Typer(
        name=runner.name,
        help=f"Run or submit the {runner.name} map/reduce job.",
        add_completion=False,
    )

    @app.command(context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
    def run(
        submit_job: bool = typer.Option(False, "--submit-job", help="Submit every step to the cluster."),
        stage: Stage | None = typer.Option(None, "--stage", help="Run one stage of one step (used by workers)."),
        step: int = typer.Option(0, "--step", help="Step to execute with --stage."),
        remote_logger: str | None = typer.Option(
            None,
            "--remote-logger",
            help="host:port of the orchestrator's log relay.",
        ),
        bucket: str | None = typer.Option(None, "--bucket", help="Google Storage bucket. Env: GS_BUCKET"),
        project: str | None = typer.Option(None, "--project", help="Google Cloud project ID. Env: GS_PROJECT"),
        cluster: str | None = typer.Option(None, "--cluster", help="Dataproc cluster. Env: GS_CLUSTER"),
        region: str | None = typer.Option(None, "--region", help="Dataproc region. Env: GS_REGION"),
        service_account: Path | None = typer.Option(
            None,
            "--service-account",
            "--service_account",
            help="Service account JSON; selects Dataproc. Env: GOOGLE_APPLICATION_CREDENTIALS",
        ),
        settings_file: Path | None = typer.Option(None, "--settings", "-s", help="Settings YAML/TOML file."),
        no_dotenv: bool = typer.Option(False, "--no-dotenv", help="Skip loading .env file."),
        env_file: Path | None = typer.Option(None, "--env-file", help="Path to .env file."),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
        json_logs: bool = typer.Option(False, "--json-logs", help="Output structured JSON logs."),
        version: bool | None = typer.Option(
            None,
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ) -> None:
        """Run as a worker stage (--stage) or as the orchestrator (--submit-job)."""
        log_level = "DEBUG" if verbose else "INFO"
        configure_logging(json_output=json_logs, level=log_level)

        if not no_dotenv:
            _load_dotenv(env_file)

        # Workers need no backend settings
        settings = None
        try:
            if stage is None:
                settings = load_settings(
                    settings_file,
                    cloud_overrides={
                        "bucket": bucket,
                        "project": project,
                        "cluster": cluster,
                        "region": region,
                        "service_account": service_account,
                    },
                )
        except FileNotFoundError as e:
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(EXIT_CONFIGURATION) from None
        except ValidationError as e:
            typer.secho("Configuration errors:", fg=typer.colors.RED, err=True)
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"])
                typer.echo(f"  - {loc}: {error['msg']}", err=True)
            raise typer.Exit(EXIT_CONFIGURATION) from None

        try:
            code = runner.run(
                stage=stage,
                step=step,
                submit_job=submit_job,
                remote_logger=remote_logger,
                settings=settings,
                log_level=log_level,
                json_logs=json_logs,
            )
        except ConfigurationError as e:
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(EXIT_CONFIGURATION) from None
        except InfrastructureError as e:
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            for note in getattr(e, "__notes__", []):
                typer.echo(f"  {note}", err=True)
            raise typer.Exit(1) from None
        raise typer.Exit(code)

    return app


def main(runner: Runner, args: list[str] | None = None) -> None:
    """Parse the command line and run. Exits the process."""
    make_app(runner)(args=args, prog_name=runner.name)
