#!/usr/bin/env python3
"""
Startup script for the Call Flow Voice Service
Runs the Twilio voice webhook that executes stored call flows
"""

import os
import sys
import argparse
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv(project_root / ".env")


def check_dependencies():
    """Check if required dependencies are installed."""
    REQUIRED_PACKAGES = [
        'fastapi',
        'uvicorn',
        'twilio',
        'supabase',
        'pydantic_settings',
        'multipart',
    ]

    missing_packages = []

    for package in REQUIRED_PACKAGES:
        try:
            __import__(package)
        except ImportError:
            missing_packages.append(package)

    if missing_packages:
        print(f"❌ Missing required packages: {', '.join(missing_packages)}")
        print("Install them with: pip install -e .")
        return False

    return True


def check_environment():
    """Check environment variables"""
    required_vars = [
        'SUPABASE_URL',
        'TWILIO_AUTH_TOKEN',
        'PUBLIC_BASE_URL',
    ]

    missing_vars = [var for var in required_vars if not os.getenv(var)]

    if missing_vars:
        print(f"⚠️  Missing required environment variables: {', '.join(missing_vars)}")
        print("Set them in your .env file or environment")
        print("Service will start but calls may answer with 'not configured'")
    else:
        print("✅ All required environment variables are set")

    if not (os.getenv('SUPABASE_SERVICE_KEY') or os.getenv('SUPABASE_ANON_KEY')):
        print("⚠️  Neither SUPABASE_SERVICE_KEY nor SUPABASE_ANON_KEY is set")

    if os.getenv('VALIDATE_TWILIO_SIGNATURE', 'true').lower() in ('0', 'false', 'no'):
        print("⚠️  Twilio signature validation is disabled")

    # Check URL formats
    public_url = os.getenv('PUBLIC_BASE_URL', '')
    if public_url and not public_url.startswith('https://'):
        print(f"⚠️  PUBLIC_BASE_URL should start with https:// (current: {public_url})")


def start_voice_service(host: str = "0.0.0.0", port: int = 5001, reload: bool = False,
                        log_level: str = "info"):
    """Start the voice service"""
    try:
        import uvicorn

        voice_endpoint = os.getenv('VOICE_ENDPOINT', '/voice')
        status_endpoint = os.getenv('STATUS_ENDPOINT', '/voice/status')

        print(f"🚀 Starting Call Flow Voice Service on {host}:{port}")
        print(f"📞 Twilio webhook URL: http://{host}:{port}{voice_endpoint}")
        print(f"📊 Status callback URL: http://{host}:{port}{status_endpoint}")
        print(f"❤️ Health check: http://{host}:{port}/health")
        print()
        print("🔧 Make sure to configure your Twilio phone number webhook to:")
        print(f"   https://your-domain.com{voice_endpoint}")

        uvicorn.run(
            "callflow.services.voice_service:app",
            host=host,
            port=port,
            reload=reload,
            log_level=log_level.lower()
        )

    except ImportError as e:
        print(f"❌ Failed to import required modules: {e}")
        print("Make sure you're in the correct directory and dependencies are installed")
        sys.exit(1)
    except Exception as e:
        print(f"❌ Failed to start voice service: {e}")
        sys.exit(1)


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Start the Call Flow Voice Service")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=5001, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument("--log-level", default="INFO", help="Log level")
    parser.add_argument("--check-only", action="store_true", help="Only check dependencies and exit")

    args = parser.parse_args()

    # The service configures logging itself from LOG_LEVEL / LOG_FORMAT
    os.environ.setdefault("LOG_LEVEL", args.log_level.upper())

    print("📞 Call Flow Voice Service Startup")
    print("=" * 40)

    print("📋 Checking dependencies...")
    if not check_dependencies():
        sys.exit(1)
    print("✅ All dependencies available")

    print("🔧 Checking environment...")
    check_environment()

    if args.check_only:
        print("✅ All checks passed!")
        return

    start_voice_service(
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level
    )


if __name__ == "__main__":
    main()
