from typing import Dict, Optional
from web3 import Web3
from .config import ENV, LOCAL_HOSTS, ChainName
from dotenv import load_dotenv
import os


load_dotenv()


def get_providers() -> Dict[ChainName, str]:
    api_key = os.getenv(ENV.ALCHEMY_API_KEY, "")

    providers: Dict[ChainName, str] = {}
    for chain in ChainName:
        url = os.getenv(ENV[f"{chain.name}_RPC_URL"])
        if not url:
            continue

        # local nodes don't take an API key
        providers[chain] = url if is_local_endpoint(url) else url + api_key

    return providers


def get_web3(chain_name: ChainName) -> Web3:
    providers = get_providers()

    if chain_name not in providers:
        raise ValueError(f"Unknown chain: {chain_name}")
    w3 = Web3(Web3.HTTPProvider(providers[chain_name]))

    return w3


def is_local_endpoint(url: Optional[str]) -> bool:
    if not isinstance(url, str):
        return False

    return any(host in url for host in LOCAL_HOSTS)


def get_endpoint_uri(w3: Web3) -> Optional[str]:
    uri = getattr(w3.provider, "endpoint_uri", None)

    return uri if isinstance(uri, str) else None
