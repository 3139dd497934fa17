import os
import time
from functools import wraps
from enum import Enum
from dotenv import load_dotenv
from loguru import logger


class Network(Enum):
    TORUS = "torus"
    TORUS_TESTNET = "torus_testnet"
    POLKADOT = "polkadot"
    KUSAMA = "kusama"
    BITTENSOR = "bittensor"
    BITTENSOR_TESTNET = "bittensor_testnet"


networks = [network.value for network in Network]


def retry_with_backoff(retries=5, backoff_in_seconds=2):
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 0
            while attempt < retries:
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    attempt += 1
                    if attempt == retries:
                        logger.error(f"Failed after {retries} attempts. Last error: {str(e)}")
                        raise

                    logger.warning(
                        f"Attempt {attempt} failed with error: {str(e)}. "
                        f"Retrying in {backoff_in_seconds} seconds..."
                    )
                    time.sleep(backoff_in_seconds)
            return None

        return wrapper

    return decorator


load_dotenv()


def get_substrate_node_url(network):
    if network not in networks:
        raise ValueError(f"Unsupported network: {network}")

    node_ws_url = os.getenv(f"{network.upper()}_NODE_WS_URL")
    if not node_ws_url:
        raise ValueError(f"Node WebSocket URL not set for network: {network}. Please check your environment variables.")

    return node_ws_url
