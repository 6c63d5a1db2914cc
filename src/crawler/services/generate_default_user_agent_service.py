# src/crawler/services/generate_default_user_agent_service.py
import platform

from sitesnap.core.managers.config_manager import config_manager


def generate_default_user_agent() -> str:
    """
    Builds a desktop Chrome user agent for the current operating system,
    using the Chrome version configured under 'user_agent.chrome_version'.
    """
    os_name = platform.system()

    if os_name == "Windows":
        os_part = "Windows NT 10.0; Win64; x64"
    elif os_name == "Darwin":
        os_part = "Macintosh; Intel Mac OS X 10_15_7"
    elif os_name == "Linux":
        os_part = "X11; Linux x86_64"
    else:
        os_part = "Unknown OS"

    chrome_version = config_manager.get_nested("user_agent.chrome_version", "124.0.0.0")

    return (
        f"Mozilla/5.0 ({os_part}) AppleWebKit/537.36 (KHTML, like Gecko) "
        f"Chrome/{chrome_version} Safari/537.36"
    )
