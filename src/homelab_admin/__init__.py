"""homelab-admin -- administrative service for a personal infrastructure host.

Pulls changes into the host's configuration repository and rebuilds the
host's declarative configuration, streaming live command output to any
number of observers while allowing only one command to run at a time.
"""

__version__ = "0.1.0"
