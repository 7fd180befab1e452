'''Entity identifier accessor generator for protoc.'''

__version__ = '0.1.0'
