"""Shared fixtures for llm-context tests."""

import pytest
import yaml

from llm_context.config import LlmContextConfig, load_config


def write_config(root, **sections):
    """Write llm-context.yaml under root and return the loaded config."""
    config_path = root / "llm-context.yaml"
    config_path.write_text(yaml.dump(sections))
    return load_config(config_path)


def make_unit_module(count=50, special="validate_email", special_body="return '@' in value"):
    """Source of a module with ``count`` small functions, one of them named ``special``."""
    lines = ["import re", ""]
    for i in range(count - 1):
        lines.append(f"def helper_{i:02d}(value):")
        lines.append(f"    return value + {i}")
        lines.append("")
    lines.append(f"def {special}(value):")
    lines.append(f"    {special_body}")
    lines.append("")
    return "\n".join(lines)


@pytest.fixture
def default_config():
    """Default configuration (file granularity)."""
    return LlmContextConfig()


@pytest.fixture
def unit_config():
    """Default configuration with unit granularity."""
    config = LlmContextConfig()
    config.granularity = "unit"
    return config


@pytest.fixture
def sample_project(tmp_path):
    """Small mixed Python/JavaScript project with a known call graph."""
    app_dir = tmp_path / "app"
    app_dir.mkdir()

    (app_dir / "service.py").write_text(
        '"""Order service."""\n'
        "\n"
        "import logging\n"
        "\n"
        "from app.store import save_order\n"
        "\n"
        "logger = logging.getLogger(__name__)\n"
        "\n"
        "\n"
        "def main():\n"
        "    order = build_order('widget')\n"
        "    place_order(order)\n"
        "\n"
        "\n"
        "def build_order(item):\n"
        "    return {'item': item}\n"
        "\n"
        "\n"
        "def place_order(order):\n"
        "    logger.info('placing order')\n"
        "    save_order(order)\n"
    )

    (app_dir / "store.py").write_text(
        '"""Persistence helpers."""\n'
        "\n"
        "import json\n"
        "\n"
        "\n"
        "def save_order(order):\n"
        "    with open('orders.json', 'a') as f:\n"
        "        f.write(json.dumps(order))\n"
    )

    web_dir = tmp_path / "web"
    web_dir.mkdir()
    (web_dir / "client.js").write_text(
        "import axios from 'axios';\n"
        "\n"
        "export async function loadOrders() {\n"
        "  const response = await axios.get('/orders');\n"
        "  return render(response.data);\n"
        "}\n"
        "\n"
        "const render = (orders) => {\n"
        "  console.log(orders.length);\n"
        "  return orders;\n"
        "};\n"
    )

    # Ignored by default rules
    deps_dir = tmp_path / "node_modules" / "pkg"
    deps_dir.mkdir(parents=True)
    (deps_dir / "index.js").write_text("function hidden() { return 1; }\n")

    return tmp_path
