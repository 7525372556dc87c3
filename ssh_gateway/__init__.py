"""SSH control plane: allowlisted remote commands, TCP tunnels and SFTP."""

__version__ = "0.3.0"
