#!/usr/bin/env python

from setuptools import setup

setup(name='xmppterm',
      version='0.1.0',
      description='Console XMPP client with multi-user chat and archive support',
      license='GPL-3.0-or-later',
      python_requires='>=3.10',
      packages=['xmppterm', 'xmppterm.modules'],
      install_requires=[
          'PyGObject',
          'lxml',
          'idna',
          'precis-i18n',
      ],
      entry_points={
          'console_scripts': [
              'xmppterm = xmppterm.__main__:main',
          ],
      },
      )
