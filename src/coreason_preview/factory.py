from coreason_preview.config import PreviewConfig
from coreason_preview.runtime import SandboxRuntime
from coreason_preview.runtimes.docker import DockerRuntime


class SandboxFactory:
    """
    Factory to create SandboxRuntime instances based on configuration.
    """

    @staticmethod
    def get_runtime(config: PreviewConfig) -> SandboxRuntime:
        """
        Returns an instance of the configured SandboxRuntime.
        """
        if config.runtime == "docker":
            return DockerRuntime(
                image=config.docker_image,
                cpu_limit=config.cpu_limit,
                memory_limit_mb=config.memory_limit_mb,
                pids_limit=config.pids_limit,
                network=config.docker_network,
                work_dir=config.work_dir,
                ready_poll_interval=config.ready_poll_interval,
            )
        else:
            # This should be unreachable due to Pydantic validation, but for safety:
            raise ValueError(f"Unknown runtime: {config.runtime}")  # pragma: no cover
