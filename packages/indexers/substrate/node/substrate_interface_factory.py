from substrateinterface import SubstrateInterface

from packages.indexers.base.enhanced_logging import ErrorContextManager, classify_error
from packages.indexers.substrate import Network, networks

# Networks whose runtimes need a bundled type registry preset
TYPE_REGISTRY_PRESETS = {
    Network.POLKADOT.value: 'polkadot',
    Network.KUSAMA.value: 'kusama',
}


class SubstrateInterfaceFactory:
    """Creates SubstrateInterface instances configured for a network."""

    _error_ctx = ErrorContextManager("substrate-interface-factory")

    @staticmethod
    def create_substrate_interface(network: str, node_ws_url: str) -> SubstrateInterface:
        """
        Create a SubstrateInterface instance for the network.

        Args:
            network: The network identifier (e.g., 'bittensor', 'torus', 'polkadot')
            node_ws_url: The WebSocket URL for the node

        Returns:
            SubstrateInterface: Connected interface

        Raises:
            ValueError: If the network is not supported
        """
        network = network.lower()
        if network not in networks:
            error = ValueError(f"Unsupported network: {network}")
            SubstrateInterfaceFactory._error_ctx.log_error(
                "Unsupported network configuration",
                error,
                network=network,
                endpoint=node_ws_url,
                error_category="validation_error",
                supported_networks=networks
            )
            raise error

        interface_config = {
            "use_remote_preset": True,
            "cache_region": None,
        }
        preset = TYPE_REGISTRY_PRESETS.get(network)
        if preset:
            interface_config["type_registry_preset"] = preset

        try:
            return SubstrateInterface(url=node_ws_url, **interface_config)
        except Exception as e:
            SubstrateInterfaceFactory._error_ctx.log_error(
                f"Failed to create {network} SubstrateInterface",
                e,
                network=network,
                endpoint=node_ws_url,
                error_category=classify_error(e),
                interface_config=interface_config
            )
            raise RuntimeError(f"Failed to create {network} SubstrateInterface: {e}")
