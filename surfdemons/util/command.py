####################################################################################################
# surfdemons/util/command.py
# This file implements the command-line parsing used by the surfdemons commands.

import pyrsistent as pyr

class CommandLineParser(object):
    '''
    CommandLineParser(instructions) yields a parser object that, when called on a list of
    command-line arguments, yields the tuple (args, opts) of the positional arguments and a dict of
    the parsed flags and options.

    Each instruction is a tuple (char, word, entry, default): char and word are the -x and --xxx
    spellings (either may be None), entry is the key in opts, and default is the value of the
    entry when the option is not given. A default of True or False marks a flag, which takes no
    value and toggles the default; short flags may be bundled (-vc). Options take a value as
    -ovalue, -o value, --output=value, or --output value. The token -- ends option processing.

    Example:
      parser = CommandLineParser(
        [('v', 'verbose', 'verbose', False),
         ('o', 'output',  'output',  None)])
      parser(['-v', 'src.gii', '--output=out.gii', 'trg.gii'])
      # ==> (['src.gii', 'trg.gii'], {'verbose':True, 'output':'out.gii'})
    '''

    def __init__(self, instructions):
        flags = {}
        options = {}
        defaults = {}
        for row in instructions:
            row = tuple(row)
            if len(row) != 4 or any(x is not None and not isinstance(x, str) for x in row[:3]):
                raise ValueError('Invalid instruction row: %s' % (row,))
            (c, w, entry, dflt) = row
            defaults[entry] = dflt
            table = flags if isinstance(dflt, bool) else options
            if c is not None: table['-' + c] = entry
            if w is not None: table['--' + w] = entry
        self.default_values = pyr.pmap(defaults)
        self.flags = pyr.pmap(flags)
        self.options = pyr.pmap(options)

    def _take_value(self, entry, value, rest):
        if value is not None: return value
        if not rest: raise ValueError('Ran out of arguments while awaiting value for %s' % entry)
        return rest.pop(0)

    def __call__(self, argv):
        rest = list(argv)
        opts = dict(self.default_values)
        args = []
        while rest:
            arg = rest.pop(0)
            if arg == '--':
                args.extend(rest)
                break
            elif arg.startswith('--'):
                (key, eq, value) = arg.partition('=')
                if key in self.flags and not eq:
                    opts[self.flags[key]] = not self.default_values[self.flags[key]]
                elif key in self.options:
                    entry = self.options[key]
                    opts[entry] = self._take_value(entry, value if eq else None, rest)
                else:
                    raise ValueError('Unrecognized flag/option: %s' % key[2:])
            elif arg.startswith('-') and len(arg) > 1:
                for (k, c) in enumerate(arg[1:]):
                    key = '-' + c
                    if key in self.flags:
                        opts[self.flags[key]] = not self.default_values[self.flags[key]]
                    elif key in self.options:
                        entry = self.options[key]
                        opts[entry] = self._take_value(entry, arg[k+2:] or None, rest)
                        break
                    else:
                        raise ValueError('Unrecognized flag/option: %s' % c)
            elif arg != '':
                args.append(arg)
        return (args, opts)
