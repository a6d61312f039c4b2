import os

basedir = os.path.abspath(os.path.dirname(__file__))


class Config:
    # SQLite database under instance/ unless CMMS_DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        'CMMS_DATABASE_URL',
        f'sqlite:///{os.path.join(basedir, "instance", "database.db")}'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.environ.get('CMMS_SECRET_KEY', 'random_secret_key_for_the_meantime_dev')

    LOG_LEVEL = os.environ.get('CMMS_LOG_LEVEL', 'INFO')

    # Account created on first start when the users collection is empty
    ADMIN_USERNAME = os.environ.get('CMMS_ADMIN_USERNAME', 'admin')
    ADMIN_PASSWORD = os.environ.get('CMMS_ADMIN_PASSWORD', 'admin123')
    ADMIN_SALARY = 30000

    HOURS_PER_MONTH = 160
    DEFAULT_DAILY_UPTIME_HOURS = 10


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SECRET_KEY = 'testing'
    LOG_LEVEL = 'DEBUG'
