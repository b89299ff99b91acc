from rate_engine.core.app_factory import create_app

app = create_app()
