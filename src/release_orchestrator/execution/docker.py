"""Argv builders and runners for the ``docker`` CLI.

Every method returns the executor's ``CommandResult``; nothing here decides
whether a failure is fatal.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from release_orchestrator.execution.executor import CommandExecutor, CommandResult, CommandSpec


class DockerCli:
    def __init__(
        self,
        executor: CommandExecutor,
        *,
        binary: str = "docker",
        cwd: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._executor = executor
        self._binary = binary
        self._cwd = cwd
        self._timeout_seconds = timeout_seconds

    @property
    def executor(self) -> CommandExecutor:
        return self._executor

    async def _run(
        self,
        *args: str,
        stdin_text: str | None = None,
        timeout_seconds: float | None = None,
    ) -> CommandResult:
        return await self._executor.run(
            CommandSpec(
                argv=(self._binary, *args),
                cwd=self._cwd,
                stdin_text=stdin_text,
                timeout_seconds=timeout_seconds or self._timeout_seconds,
            )
        )

    async def build(
        self,
        *,
        tag: str,
        context: str,
        dockerfile: str,
        build_args: Mapping[str, str],
        labels: Mapping[str, str],
        timeout_seconds: float | None = None,
    ) -> CommandResult:
        argv: list[str] = ["build", "-t", tag, "-f", dockerfile]
        for key in sorted(build_args):
            argv.extend(["--build-arg", f"{key}={build_args[key]}"])
        for key in sorted(labels):
            argv.extend(["--label", f"{key}={labels[key]}"])
        argv.append(context)
        return await self._run(*argv, timeout_seconds=timeout_seconds)

    async def run_detached(
        self,
        *,
        image: str,
        name: str,
        ports: Sequence[tuple[int, int]] = (),
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        argv: list[str] = ["run", "-d", "--name", name]
        for host_port, container_port in ports:
            argv.extend(["-p", f"{host_port}:{container_port}"])
        for key in sorted(env or {}):
            argv.extend(["-e", f"{key}={(env or {})[key]}"])
        argv.append(image)
        return await self._run(*argv)

    async def remove_container(self, name: str) -> CommandResult:
        return await self._run("rm", "-f", name)

    async def logs(self, name: str, *, tail: int) -> CommandResult:
        return await self._run("logs", "--tail", str(tail), name)

    async def tag(self, source: str, target: str) -> CommandResult:
        return await self._run("tag", source, target)

    async def push(self, ref: str) -> CommandResult:
        return await self._run("push", ref)

    async def login(self, registry: str, *, username: str, password: str) -> CommandResult:
        # The password travels on stdin; it never appears in argv.
        return await self._run(
            "login", registry, "--username", username, "--password-stdin", stdin_text=password
        )

    async def logout(self, registry: str) -> CommandResult:
        return await self._run("logout", registry)

    async def prune_dangling_images(self) -> CommandResult:
        return await self._run("image", "prune", "-f")


__all__ = ["DockerCli"]
