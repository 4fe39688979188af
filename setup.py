from setuptools import setup

__version__ = "0.4.0"
__author__ = "The devsugar authors"
__author_email__ = "devsugar@users.noreply.github.com"
__license__ = "Apache v2"
__copyright__ = "Copyright (c) 2023 The devsugar authors"

setup( name = 'devsugar',
       version = __version__,
       description = 'OAuth2/OIDC loopback login flows and a local IAP emulation proxy for developer CLIs',
       author = __author__,
       author_email = __author_email__,
       license = __license__,
       packages = [ 'devsugar' ],
       zip_safe = True,
       python_requires = '>=3.8',
       install_requires = [ 'requests', 'pyyaml', 'PyJWT>=2.6', 'cryptography>=44.0.1', 'orjson', 'pygments', 'rich' ],
       extras_require = {
           'test': [ 'pytest' ],
       },
       long_description = 'Sugar for developers: OAuth2/OIDC login for CLIs, token caching and a local identity-aware proxy.',
       entry_points = {
           'console_scripts': [
               'devsugar=devsugar.__main__:main',
           ],
       },
)
