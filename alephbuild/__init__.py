"""aleph-build: build-and-release pipeline for aleph-node.

Builds the node binary and, for production, the runtime blob and the node
container image from one source checkout, then publishes them under
deterministic names into a retention-governed artifact store.
"""

__version__ = "0.1.0"
__description__ = "Build-and-release pipeline for aleph-node artifacts"

from alephbuild.core.orchestrator import Orchestrator
from alephbuild.cli.app import app as cli

__all__ = ["Orchestrator", "cli", "__version__"]
