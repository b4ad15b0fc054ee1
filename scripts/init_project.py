#!/usr/bin/env python3
"""
Check that the load matching platform is ready to run.

This script:
- Checks the Python version
- Loads .env and reports which optional advisor keys are set
- Validates config/config.yaml and config/llms.json against the typed config models
- Checks that required packages import
"""

import os
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def check_python_version() -> bool:
    """Verify Python version is 3.12 or higher."""
    if sys.version_info < (3, 12):
        print(f"❌ Python 3.12+ required. Current version: {sys.version}")
        return False
    print(f"✅ Python version: {sys.version_info.major}.{sys.version_info.minor}")
    return True


def check_env() -> bool:
    """Load .env if present. Advisor keys are optional: the engines run without them."""
    env_path = PROJECT_ROOT / ".env"
    if env_path.exists():
        load_dotenv(env_path)
        print("✅ .env loaded")
    else:
        print("⚠️  No .env file (copy .env.example to .env to enable the pricing advisor)")

    missing = [
        var
        for var in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY")
        if not os.getenv(var) or os.getenv(var, "").startswith("your_")
    ]
    if missing:
        print(f"⚠️  Advisor keys not set: {', '.join(missing)} (deterministic pricing only)")
    else:
        print("✅ Advisor keys set")
    return True


def check_config_files() -> bool:
    """Validate configuration files exist and parse into the typed config."""
    config_dir = PROJECT_ROOT / "config"
    for name, description in (("config.yaml", "Business policy"), ("llms.json", "LLM configuration")):
        if not (config_dir / name).exists():
            print(f"❌ {description} not found: config/{name}")
            return False
        print(f"✅ {description} exists")

    try:
        with open(config_dir / "config.yaml") as f:
            if not yaml.safe_load(f):
                print("❌ config.yaml is empty")
                return False
    except yaml.YAMLError as e:
        print(f"❌ Error parsing config.yaml: {e}")
        return False

    sys.path.insert(0, str(PROJECT_ROOT))
    from loadmatch.core.config import ConfigManager

    manager = ConfigManager(config_dir)
    try:
        pricing = manager.get_pricing_config()
        scoring = manager.get_scoring_config()
        manager.get_matching_config()
        manager.get_agent_llm_config("pricing_advisor")
    except Exception as e:
        print(f"❌ Invalid configuration: {e}")
        return False

    print(f"✅ Pricing algorithm {pricing.algorithm_version} ({pricing.currency})")
    print(f"✅ Match threshold {scoring.minimum_match_score}")
    return True


def test_imports() -> bool:
    """Test that critical packages can be imported."""
    required_packages = [
        "anthropic",
        "openai",
        "pydantic",
        "pydantic_settings",
        "structlog",
        "yaml",
        "dotenv",
    ]

    missing = []
    for package in required_packages:
        try:
            __import__(package)
        except ImportError:
            missing.append(package)

    if missing:
        print(f"❌ Missing packages: {', '.join(missing)}")
        print("   Run: pip install -e .")
        return False

    print("✅ All required packages installed")
    return True


def display_next_steps() -> None:
    """Show what to do next."""
    print("\n" + "=" * 60)
    print("🎉 Setup looks good!")
    print("=" * 60)
    print("\nNext steps:")
    print("\n1. Tune pricing and scoring policy in config/config.yaml")
    print("2. Review the advisor model assignment in config/llms.json")
    print("3. Run the demo:")
    print("   loadmatch-demo")
    print("4. Run the tests:")
    print("   pytest")
    print("\n" + "=" * 60)


def main() -> int:
    """Run all checks."""
    print("=" * 60)
    print("Load Matching Platform - Setup Check")
    print("=" * 60)

    checks = [
        ("Python version", check_python_version),
        ("Environment", check_env),
        ("Package imports", test_imports),
        ("Configuration files", check_config_files),
    ]

    passed = 0
    failed = 0
    for name, check_func in checks:
        print(f"\nChecking {name}...")
        if check_func():
            passed += 1
        else:
            failed += 1

    print("\n" + "=" * 60)
    print(f"Results: {passed} passed, {failed} failed")
    print("=" * 60)

    if failed == 0:
        display_next_steps()
        return 0
    print("\n❌ Some checks failed. Please fix the issues above.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
