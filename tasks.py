from pathlib import Path
from invoke import task, Context

root_path = Path(__file__).parent.absolute()


@task
def test(ctx: Context) -> None:
    # Run linters
    ctx.run("ruff check")
    ctx.run("mypy image_trust_audit main.py")

    # Run the test suite
    ctx.run("pytest")


@task
def lint(ctx: Context) -> None:
    ctx.run("ruff format .")
    ctx.run("ruff check . --fix")
    ctx.run("mypy image_trust_audit main.py")


@task
def scan(ctx: Context, image: str, config: str = ".image-trust-audit.yaml", permissive: bool = False) -> None:
    """Export a local Docker image and validate it against a policy file.
    """
    image_tar = root_path / "image.tar"
    ctx.run(f"docker create --name image-trust-audit-scan {image}")
    try:
        ctx.run(f"docker export image-trust-audit-scan -o {image_tar}")
    finally:
        ctx.run("docker rm image-trust-audit-scan")

    try:
        permissive_flag = " --permissive" if permissive else ""
        ctx.run(f"python main.py validate --config {config}{permissive_flag} {image_tar}")
    finally:
        image_tar.unlink(missing_ok=True)
